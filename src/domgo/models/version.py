"""Build identity and persisted version fingerprint models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings, config


class RuntimeIdentity(BaseModel):
    """Version identity of the running build (read-only)."""

    model_config = ConfigDict(frozen=True)

    app_version: str
    build_version: str
    update_id: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RuntimeIdentity":
        """Read the identity of the current runtime from settings."""
        settings = settings or config
        return cls(
            app_version=settings.app_version,
            build_version=settings.build_version,
            update_id=settings.update_id or None,
        )


class VersionFingerprint(BaseModel):
    """Version information persisted after every full cache clear.

    Every field except ``update_id`` is required; a stored fingerprint that
    lacks one of them is treated as corrupted.
    """

    app_version: str = Field(..., min_length=1)
    build_version: str = Field(..., min_length=1)
    update_id: Optional[str] = None
    last_clear_at: datetime
    clear_reason: str

    @classmethod
    def for_runtime(cls, identity: RuntimeIdentity, reason: str) -> "VersionFingerprint":
        """Fingerprint describing ``identity`` cleared just now."""
        return cls(
            app_version=identity.app_version,
            build_version=identity.build_version,
            update_id=identity.update_id,
            last_clear_at=datetime.now(),
            clear_reason=reason,
        )

    def mismatch_reason(self, identity: RuntimeIdentity) -> Optional[str]:
        """Describe why this fingerprint does not match ``identity``.

        The update id is only compared when the runtime has one.

        Returns:
            Human-readable reason, or None if the versions match
        """
        if self.app_version != identity.app_version:
            return f"App version changed: {self.app_version} -> {identity.app_version}"
        if self.build_version != identity.build_version:
            return (
                f"Build version changed: {self.build_version} -> {identity.build_version}"
            )
        if identity.update_id and self.update_id != identity.update_id:
            return f"Update ID changed: {self.update_id} -> {identity.update_id}"
        return None
