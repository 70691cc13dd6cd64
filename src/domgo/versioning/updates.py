"""Checks the release feed for a newer application version."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from ..collectors.base import NetworkError
from ..config import Settings, config
from ..storage.kvstore import KeyValueStore

logger = logging.getLogger(__name__)

LAST_UPDATE_CHECK_KEY = "last_update_check"


@dataclass(frozen=True)
class UpdateCheckResult:
    """Outcome of one update check."""

    is_update_available: bool
    latest_version: str
    current_version: str
    checked: bool = True


def compare_versions(current: str, latest: str) -> bool:
    """Check if ``latest`` is newer than ``current``.

    Versions are compared segment by segment as integers; missing segments
    count as zero and non-numeric segments as zero.

    Example:
        compare_versions("1.2", "1.2.1")  # True
        compare_versions("1.10", "1.9")   # False
    """
    current_parts = _version_parts(current)
    latest_parts = _version_parts(latest)
    length = max(len(current_parts), len(latest_parts))
    current_parts += [0] * (length - len(current_parts))
    latest_parts += [0] * (length - len(latest_parts))
    return latest_parts > current_parts


def _version_parts(version: str) -> list[int]:
    parts = []
    for segment in version.strip().lstrip("vV").split("."):
        try:
            parts.append(int(segment))
        except ValueError:
            parts.append(0)
    return parts


class UpdateChecker:
    """Polls the release feed, at most once per check interval.

    Example:
        checker = UpdateChecker(store)
        result = await checker.check_for_updates()
        if result.is_update_available:
            print(f"Version {result.latest_version} is available")
    """

    source = "update_feed"

    def __init__(
        self,
        store: KeyValueStore,
        current_version: Optional[str] = None,
        feed_url: Optional[str] = None,
        check_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
        backoff_factor: float = 1.5,
        client: Optional[httpx.AsyncClient] = None,
        now: Callable[[], float] = time.time,
        settings: Optional[Settings] = None,
    ):
        settings = settings or config
        self._store = store
        self.current_version = current_version or settings.app_version
        self.feed_url = feed_url or settings.update_feed_url
        self.check_interval = (
            check_interval if check_interval is not None else settings.update_check_interval
        )
        self.timeout = timeout if timeout is not None else settings.update_check_timeout
        self.max_retries = max_retries or settings.update_check_retries
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self._client = client
        self._now = now

    async def _should_check(self) -> bool:
        raw = await self._store.get(LAST_UPDATE_CHECK_KEY)
        if raw is None:
            return True
        try:
            last_check = float(raw)
        except ValueError:
            logger.debug(f"Ignoring unreadable last update check: {raw!r}")
            return True
        return self._now() - last_check >= self.check_interval

    async def check_for_updates(self, force: bool = False) -> UpdateCheckResult:
        """Ask the release feed for the latest version.

        Args:
            force: Check even if the last check is recent

        Returns:
            Result; ``checked`` is False when the check was skipped

        Raises:
            NetworkError: If the feed could not be reached
        """
        if not force and not await self._should_check():
            logger.debug("Update check skipped, last check is recent")
            return UpdateCheckResult(
                is_update_available=False,
                latest_version=self.current_version,
                current_version=self.current_version,
                checked=False,
            )

        await self._store.set(LAST_UPDATE_CHECK_KEY, str(self._now()))

        release = await self._fetch_latest_release()
        tag = release.get("tag_name")
        if not isinstance(tag, str) or not tag:
            raise NetworkError(self.source, "Release feed has no tag_name")

        latest_version = tag[1:] if tag[0] in "vV" else tag
        available = compare_versions(self.current_version, latest_version)
        if available:
            logger.info(f"Update available: {self.current_version} -> {latest_version}")
        else:
            logger.debug(f"Up to date ({self.current_version})")

        return UpdateCheckResult(
            is_update_available=available,
            latest_version=latest_version,
            current_version=self.current_version,
        )

    async def _fetch_latest_release(self) -> dict[str, Any]:
        """GET the feed with retries and increasing backoff."""
        delay = self.retry_delay
        last_error = "Max retries exceeded"
        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Accept": "application/vnd.github.v3+json"},
            follow_redirects=True,
        )

        try:
            for attempt in range(self.max_retries):
                try:
                    response = await client.get(self.feed_url, timeout=self.timeout)
                    response.raise_for_status()
                    payload = response.json()
                    if not isinstance(payload, dict):
                        raise ValueError("release payload is not an object")
                    return payload
                except httpx.TimeoutException:
                    last_error = "Request timeout"
                except httpx.HTTPStatusError as e:
                    last_error = f"HTTP error: {e.response.status_code}"
                except httpx.TransportError as e:
                    last_error = f"Transport error: {e}"
                except ValueError as e:
                    last_error = f"Invalid response: {e}"

                logger.debug(
                    f"Update check attempt {attempt + 1}/{self.max_retries} failed: {last_error}"
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= self.backoff_factor
        finally:
            if owns_client:
                await client.aclose()

        raise NetworkError(self.source, f"{last_error} after {self.max_retries} attempts")
