"""domgo - client data-access layer for the domgo property listing app.

Caches, paginates and coordinates requests to the remote listing catalog,
and wipes derived state when the running build changes.
"""

__version__ = "0.9.3"

from domgo.service import PropertyService

__all__ = ["PropertyService", "__version__"]
