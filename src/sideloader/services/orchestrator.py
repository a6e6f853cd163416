"""Install orchestration: sourcing, transfer, install and cleanup."""

import asyncio
import logging
import posixpath
import time
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

import aiofiles

from sideloader.config import Settings
from sideloader.errors import (
    CommandError,
    DeviceConnectionError,
    FileResolutionError,
    ManifestFormatError,
    NotConnectedError,
    describe_error,
)
from sideloader.models.device import DeviceInfo, InstallResult, PackageSource, SelectedFile
from sideloader.models.status import StageEnum
from sideloader.services.bundle_resolver import (
    MANIFEST_FILE_NAME,
    build_file_set,
    find_manifest,
    require,
)
from sideloader.services.device import DeviceBackend, DeviceSession, read_chunks
from sideloader.services.manifest_parser import parse_manifest
from sideloader.services.progress import ProgressReporter
from sideloader.services.release_resolver import ReleaseResolver
from sideloader.services.state_manager import StateManager
from sideloader.utils.remote_paths import (
    auxiliary_dir,
    auxiliary_file_path,
    temp_package_path,
)

SUCCESS_TOKEN = "success"


def _now_ms() -> int:
    return int(time.time() * 1000)


class InstallOrchestrator:
    """Owns the device session and runs install attempts against it.

    Every attempt runs its device operations strictly one after another:
    push, ``pm install``, ``rm`` and, for bundles, the auxiliary pushes.
    Nothing is retried; a fatal error ends the attempt in ``failed``.
    """

    def __init__(
        self,
        backend: DeviceBackend,
        settings: Optional[Settings] = None,
        release_resolver: Optional[ReleaseResolver] = None,
        state_manager: Optional[StateManager] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        """Initialize orchestrator.

        Args:
            backend: Opens device sessions
            settings: Service settings (defaults if None)
            release_resolver: Release feed client (built from settings if None)
            state_manager: StateManager instance (uses singleton if None)
            clock: Milliseconds timestamp source for temp file names
        """
        self.logger = logging.getLogger("sideloader.orchestrator")
        self.settings = settings or Settings()
        self.backend = backend
        self.state_manager = state_manager or StateManager(self.settings.log_history)
        self.release_resolver = release_resolver or ReleaseResolver(
            api_url=self.settings.github_api_url,
            timeout=self.settings.http_timeout,
            emit=self.state_manager.log,
        )
        self.clock = clock

        self._session: Optional[DeviceSession] = None
        self.device_info: Optional[DeviceInfo] = None

    # --- session ---

    @property
    def session(self) -> Optional[DeviceSession]:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    def _require_session(self) -> DeviceSession:
        if not self.is_connected:
            raise NotConnectedError()
        return self._session

    async def connect(self, selector: Optional[str] = None) -> DeviceInfo:
        """Connect to a device, replacing any existing session.

        Args:
            selector: adb serial, first device if None

        Returns:
            DeviceInfo read from the device properties

        Raises:
            DeviceConnectionError: If the device cannot be reached or authorized
        """
        await self.disconnect()

        log = self.state_manager.log
        log("Connecting to ADB… (put headset on and accept USB debugging)")
        try:
            session = await self.backend.connect(
                selector,
                on_auth_pending=lambda: log("Auth pending: accept the prompt inside the headset."),
            )
        except DeviceConnectionError as e:
            log(describe_error(e))
            raise
        except Exception as e:
            log(f"{DeviceConnectionError.kind}: {e}")
            raise DeviceConnectionError(str(e)) from e

        self._session = session
        self.device_info = DeviceInfo(
            serial=session.serial,
            manufacturer=await self._getprop("ro.product.manufacturer"),
            model=await self._getprop("ro.product.model"),
        )
        log(f"Connected to {self.device_info.label}")
        return self.device_info

    async def _getprop(self, name: str) -> str:
        try:
            return (await self._session.run_command(["getprop", name])).strip()
        except CommandError as e:
            self.logger.warning(f"Could not read {name}: {e}")
            return ""

    async def disconnect(self) -> None:
        """Drop the current session. Close errors are logged and ignored."""
        session, self._session = self._session, None
        self.device_info = None
        if session is None:
            return
        try:
            await session.disconnect()
        except Exception as e:
            self.logger.warning(f"Ignoring error while closing session {session.serial}: {e}")
        self.state_manager.log("Disconnected.")

    # --- attempts ---

    async def install_package(self, source: Optional[PackageSource] = None) -> InstallResult:
        """Install one APK from a local file, a direct URL or the release feed."""
        source = source or PackageSource()
        return await self._run_attempt(lambda: self._package_flow(source))

    async def install_latest_release(
        self, owner: Optional[str] = None, repo: Optional[str] = None
    ) -> InstallResult:
        return await self.install_package(PackageSource(owner=owner, repo=repo))

    async def install_bundle(self, selected_files: Iterable[SelectedFile]) -> InstallResult:
        """Install a bundle: the APK named by release.manifest plus its OBB files."""
        selected = list(selected_files)
        return await self._run_attempt(lambda: self._bundle_flow(selected))

    async def _run_attempt(self, flow: Callable[[], Awaitable[InstallResult]]) -> InstallResult:
        try:
            result = await flow()
        except asyncio.CancelledError:
            self._stage(StageEnum.FAILED, 0, "Install cancelled", error="CANCELLED: attempt cancelled")
            raise
        except Exception as e:
            error = describe_error(e)
            self.logger.error(f"Install attempt failed: {error}", exc_info=True)
            self.state_manager.log(error)
            self._stage(StageEnum.FAILED, 0, "Install failed", error=error)
            raise

        if result.success:
            message = "APK install success. Quest → Apps → Unknown Sources."
        else:
            message = "APK install may have failed (see pm output above)."
        self.state_manager.log(message)
        self._stage(StageEnum.DONE, 100, message)
        return result

    def _stage(self, stage: StageEnum, progress: int, message: str, error: Optional[str] = None) -> None:
        self.state_manager.update_status(stage=stage, progress=progress, message=message, error=error)

    def _progress(self, label: str) -> Callable[[int, int], None]:
        """Progress callback that logs throttled lines and mirrors them in the status."""
        reporter = ProgressReporter(label, self.state_manager.log)

        def on_progress(sent: int, total: int) -> None:
            before = reporter.last
            reporter(sent, total)
            if reporter.last != before:
                self._stage(StageEnum.TRANSFERRING, min(reporter.last, 100), f"{label}…")

        return on_progress

    async def _package_flow(self, source: PackageSource) -> InstallResult:
        self._require_session()
        self._stage(StageEnum.PREPARING_SOURCE, 0, "Preparing package…")
        package_path = await self._obtain_package(source)
        return await self._install_apk(package_path)

    async def _obtain_package(self, source: PackageSource) -> Path:
        download_dir = Path(self.settings.download_dir)

        if source.path is not None:
            path = Path(source.path).expanduser()
            if not path.is_file():
                raise FileResolutionError(str(path))
            return path

        url = source.url or self.settings.apk_url
        if url:
            return await self.release_resolver.download_url(url, download_dir)

        _, asset = await self.release_resolver.resolve_installable(
            source.owner or self.settings.release_owner,
            source.repo or self.settings.release_repo,
        )
        return await self.release_resolver.download_asset(asset, download_dir)

    async def _install_apk(self, package_path: Path) -> InstallResult:
        session = self._require_session()
        log = self.state_manager.log

        size = package_path.stat().st_size
        log(f"APK: {package_path.name} ({size} bytes)")

        remote = temp_package_path(self.settings.device_temp_dir, package_path.name, self.clock())
        log(f"Pushing APK → {remote}")
        self._stage(StageEnum.TRANSFERRING, 0, f"Pushing {package_path.name}…")

        try:
            await session.push_file(remote, read_chunks(package_path), size, self._progress("APK push"))

            log("Installing APK (pm install -r) …")
            self._stage(StageEnum.INSTALLING, 100, "Installing APK…")
            out = await session.run_command(["pm", "install", "-r", remote])
            log(f"pm output: {out.strip() or '(no output)'}")
        finally:
            await self._cleanup(session, remote)

        return InstallResult(
            package_file=package_path.name,
            remote_path=remote,
            output=out,
            success=SUCCESS_TOKEN in out.lower(),
        )

    async def _cleanup(self, session: DeviceSession, remote: str) -> None:
        self.state_manager.log("Cleaning temp APK…")
        self._stage(StageEnum.CLEANING_UP, 100, "Cleaning temp APK…")
        try:
            await session.run_command(["rm", "-f", remote])
        except Exception as e:
            self.logger.warning(f"Cleanup of {remote} failed: {e}")
            self.state_manager.log(f"Could not remove {remote} (ignored): {e}")

    async def _bundle_flow(self, selected: list[SelectedFile]) -> InstallResult:
        self._require_session()
        log = self.state_manager.log
        self._stage(StageEnum.PREPARING_SOURCE, 0, "Reading bundle…")

        file_set = build_file_set(selected)
        manifest_file = find_manifest(file_set)
        if manifest_file is None:
            raise FileResolutionError(MANIFEST_FILE_NAME)

        try:
            async with aiofiles.open(manifest_file.path, "r", encoding="utf-8-sig") as f:
                text = await f.read()
        except UnicodeDecodeError as e:
            raise ManifestFormatError(f"{MANIFEST_FILE_NAME} is not valid UTF-8: {e}") from e
        manifest = parse_manifest(text)
        log(f"Bundle: {manifest.package_name} (version {manifest.version_code})")

        package_file = require(file_set, manifest.package_file_path)
        auxiliary = [(p, require(file_set, p)) for p in manifest.auxiliary_file_paths]

        result = await self._install_apk(package_file.path)

        session = self._require_session()
        target_dir = auxiliary_dir(self.settings.obb_root, manifest.package_name)
        log(f"Preparing {target_dir} …")
        out = await session.run_command(["mkdir", "-p", target_dir])
        if out.strip():
            log(f"mkdir output: {out.strip()}")

        pushed = []
        for idx, (manifest_path, local) in enumerate(auxiliary, start=1):
            remote = auxiliary_file_path(target_dir, manifest_path)
            size = local.path.stat().st_size
            log(f"Pushing OBB {idx}/{len(auxiliary)}: {local.name} ({size} bytes) → {remote}")
            self._stage(StageEnum.TRANSFERRING, 0, f"Pushing {local.name}…")
            await session.push_file(
                remote,
                read_chunks(local.path),
                size,
                self._progress(posixpath.basename(manifest_path)),
            )
            pushed.append(remote)

        log(f"Pushed {len(pushed)} OBB file(s) to {target_dir}")
        return result.model_copy(
            update={"package_name": manifest.package_name, "auxiliary_files": pushed}
        )
