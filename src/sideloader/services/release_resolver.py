"""Release feed lookup and package download."""

import logging
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

import aiofiles
import httpx
from pydantic import ValidationError

from sideloader.errors import ReleaseResolutionError
from sideloader.models.release import ReleaseAsset, ReleaseCandidate
from sideloader.services.progress import make_reporter
from sideloader.utils.remote_paths import sanitize_file_name

GITHUB_ACCEPT = "application/vnd.github+json"
DEFAULT_PACKAGE_NAME = "package.apk"


def select_release(candidates: list[ReleaseCandidate]) -> ReleaseCandidate:
    """Pick the newest eligible release, preferring stable over prerelease.

    Args:
        candidates: Feed entries in feed order (newest first)

    Returns:
        First eligible non-prerelease, otherwise first eligible candidate

    Raises:
        ReleaseResolutionError: If no candidate is eligible
    """
    eligible = [c for c in candidates if c.is_eligible]
    if not eligible:
        raise ReleaseResolutionError("No release with an installable APK asset found.")
    for candidate in eligible:
        if not candidate.is_prerelease:
            return candidate
    return eligible[0]


class ReleaseResolver:
    """Resolves the installable asset of a GitHub-style release feed."""

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        emit: Optional[Callable[[str], None]] = None,
    ):
        """Initialize release resolver.

        Args:
            api_url: Release feed API base URL
            timeout: HTTP timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
            emit: Sink for user-visible log lines (module logger if None)
        """
        self.logger = logging.getLogger("sideloader.release")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.emit = emit or self.logger.info
        self.chunk_size = 64 * 1024

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
        )

    async def resolve_installable(
        self, owner: str, repo: str
    ) -> tuple[ReleaseCandidate, ReleaseAsset]:
        """Select the release to install and its APK asset.

        Tiers:
        1. ``/releases/latest``; request failure or non-2xx falls to tier 2,
           an ineligible release falls to tier 3.
        2. ``/releases``; failure here fails the resolution.
        3. Eligibility filter over the list, stable releases first.

        Raises:
            ReleaseResolutionError: If no eligible release can be found
        """
        base = f"{self.api_url}/repos/{owner}/{repo}/releases"
        headers = {"Accept": GITHUB_ACCEPT}
        self.emit(f"Checking latest {repo} release…")

        async with self._client() as client:
            try:
                response = await client.get(f"{base}/latest", headers=headers)
            except httpx.HTTPError as e:
                self.logger.warning(f"Latest release request failed: {e}")
                response = None

            if response is not None and response.is_success:
                try:
                    latest = ReleaseCandidate.model_validate(response.json())
                except (ValueError, ValidationError) as e:
                    self.logger.warning(f"Unreadable latest release payload: {e}")
                    latest = None
                if latest is not None and latest.is_eligible:
                    return self._selected(latest)
                self.emit("Latest release has no installable APK. Checking full release list…")
            elif response is not None:
                self.emit(
                    f"Latest release endpoint returned {response.status_code}. "
                    f"Falling back to full release list…"
                )

            try:
                response = await client.get(base, headers=headers)
            except httpx.HTTPError as e:
                raise ReleaseResolutionError(f"Could not fetch releases: {e}") from e
            if not response.is_success:
                raise ReleaseResolutionError(
                    f"Could not fetch releases ({response.status_code})."
                )

            try:
                payload = response.json()
            except ValueError as e:
                raise ReleaseResolutionError(f"Invalid release list: {e}") from e
            if not isinstance(payload, list) or not payload:
                raise ReleaseResolutionError(f"No releases found for {owner}/{repo}.")

            candidates = []
            for entry in payload:
                try:
                    candidates.append(ReleaseCandidate.model_validate(entry))
                except ValidationError as e:
                    self.logger.debug(f"Skipping malformed release entry: {e}")

        return self._selected(select_release(candidates))

    def _selected(self, candidate: ReleaseCandidate) -> tuple[ReleaseCandidate, ReleaseAsset]:
        asset = candidate.installable_asset
        self.emit(f"Latest release: {candidate.display_name}")
        return candidate, asset

    async def download_asset(self, asset: ReleaseAsset, target_dir: Path) -> Path:
        """Download a release asset into ``target_dir``."""
        return await self._download(asset.download_url, asset.name, target_dir)

    async def download_url(self, url: str, target_dir: Path) -> Path:
        """Download a package from a directly configured URL."""
        name = unquote(Path(urlparse(url).path).name) or DEFAULT_PACKAGE_NAME
        return await self._download(url, name, target_dir)

    async def _download(self, url: str, name: str, target_dir: Path) -> Path:
        target_dir = Path(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        target_path = target_dir / sanitize_file_name(name)

        self.emit(f"Downloading {name}…")
        self.logger.info(f"Starting download: url={url}, target={target_path}")
        on_progress = make_reporter("Download", self.emit)

        try:
            async with self._client() as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise ReleaseResolutionError(
                            f"Could not download {name} ({response.status_code})."
                        )
                    total = int(response.headers.get("Content-Length") or 0)
                    received = 0
                    async with aiofiles.open(target_path, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                            await f.write(chunk)
                            received += len(chunk)
                            on_progress(received, total)
        except httpx.HTTPError as e:
            target_path.unlink(missing_ok=True)
            raise ReleaseResolutionError(f"Could not download {name}: {e}") from e
        except BaseException:
            target_path.unlink(missing_ok=True)
            raise

        self.logger.info(f"Downloaded {received} bytes to {target_path}")
        return target_path
