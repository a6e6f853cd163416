"""Device sessions backed by the adb command line tool."""

import asyncio
import logging
import shlex
from typing import AsyncIterable, AsyncIterator, Callable, Optional, Protocol, Sequence

import aiofiles

from sideloader.errors import CommandError, DeviceConnectionError, TransferError

ProgressCallback = Callable[[int, int], None]

CHUNK_SIZE = 64 * 1024


class DeviceSession(Protocol):
    """An authenticated channel to one connected device."""

    serial: str

    @property
    def closed(self) -> bool: ...

    async def run_command(self, argv: Sequence[str]) -> str: ...

    async def push_file(
        self,
        remote_path: str,
        stream: AsyncIterable[bytes],
        total: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None: ...

    async def disconnect(self) -> None: ...


class DeviceBackend(Protocol):
    """Opens device sessions."""

    async def connect(
        self,
        selector: Optional[str] = None,
        on_auth_pending: Optional[Callable[[], None]] = None,
    ) -> DeviceSession: ...


async def read_chunks(path, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Pull-based reader: the next chunk is read only when requested."""
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                return
            yield chunk


class AdbSession:
    """Session on one adb device, identified by serial."""

    def __init__(self, adb_path: str, serial: str):
        self.logger = logging.getLogger("sideloader.device")
        self.adb_path = adb_path
        self.serial = serial
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _argv(self, *args: str) -> list[str]:
        return [self.adb_path, "-s", self.serial, *args]

    async def run_command(self, argv: Sequence[str]) -> str:
        """Run ``argv`` in the device shell and return its text output.

        The remote exit status is not interpreted: callers inspect the output.

        Raises:
            CommandError: If adb itself fails (device gone, adb missing)
        """
        if self._closed:
            raise CommandError("Session is closed.")

        remote = " ".join(shlex.quote(arg) for arg in argv)
        self.logger.debug(f"Device shell ({self.serial}): {remote}")

        try:
            process = await asyncio.create_subprocess_exec(
                *self._argv("shell", remote),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except OSError as e:
            raise CommandError(f"Failed to run adb: {e}") from e

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace").strip()
        adb_failed = err.startswith(("error:", "adb: error")) or (
            not out.strip() and err.startswith("adb:")
        )
        if process.returncode != 0 and adb_failed:
            raise CommandError(f"'{argv[0]}' failed on {self.serial}: {err}")
        if not out.strip() and err:
            return err
        return out

    async def push_file(
        self,
        remote_path: str,
        stream: AsyncIterable[bytes],
        total: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Stream bytes into ``remote_path`` on the device.

        Each chunk is pulled from ``stream`` only after the previous one has
        been drained into adb. Cancelling the caller kills adb and closes the
        stream.

        Raises:
            TransferError: If adb exits non-zero or the pipe breaks
        """
        if self._closed:
            raise TransferError("Session is closed.")

        self.logger.info(f"Pushing {total} bytes to {self.serial}:{remote_path}")
        try:
            process = await asyncio.create_subprocess_exec(
                *self._argv("exec-in", f"cat > {shlex.quote(remote_path)}"),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransferError(f"Failed to run adb: {e}") from e

        sent = 0
        try:
            try:
                async for chunk in stream:
                    process.stdin.write(chunk)
                    await process.stdin.drain()
                    sent += len(chunk)
                    if on_progress:
                        on_progress(sent, total)
            except (BrokenPipeError, ConnectionResetError) as e:
                await process.wait()
                raise TransferError(
                    f"Push to {remote_path} interrupted after {sent} bytes: {e}"
                ) from e

            _, stderr = await process.communicate()
            if process.returncode != 0:
                raise TransferError(
                    f"Push to {remote_path} failed: exit code {process.returncode}, "
                    f"stderr: {stderr.decode('utf-8', errors='replace').strip()}"
                )
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        self.logger.info(f"Pushed {sent} bytes to {remote_path}")

    async def disconnect(self) -> None:
        """Release the session. Idempotent."""
        if not self._closed:
            self._closed = True
            self.logger.info(f"Session closed: {self.serial}")


def parse_devices(output: str) -> list[tuple[str, str]]:
    """Parse ``adb devices`` output into ``(serial, state)`` pairs."""
    devices = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) >= 2:
            devices.append((parts[0], parts[1]))
    return devices


class AdbDeviceBackend:
    """Connects to USB devices through the local adb server."""

    def __init__(self, adb_path: str = "adb", auth_timeout: float = 120.0, poll_interval: float = 1.0):
        self.logger = logging.getLogger("sideloader.device")
        self.adb_path = adb_path
        self.auth_timeout = auth_timeout
        self.poll_interval = poll_interval

    async def _adb(self, *args: str) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self.adb_path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except OSError as e:
            raise DeviceConnectionError(f"adb not available ({self.adb_path}): {e}") from e

        if process.returncode != 0:
            raise DeviceConnectionError(
                f"adb {' '.join(args)} failed: exit code {process.returncode}, "
                f"stderr: {stderr.decode('utf-8', errors='replace').strip()}"
            )
        return stdout.decode("utf-8", errors="replace")

    async def connect(
        self,
        selector: Optional[str] = None,
        on_auth_pending: Optional[Callable[[], None]] = None,
    ) -> AdbSession:
        """Wait for the selected (or first) device to be authorized.

        Args:
            selector: adb serial; the first listed device is used if None
            on_auth_pending: Called once when the device awaits on-device approval

        Returns:
            AdbSession for the device

        Raises:
            DeviceConnectionError: If adb fails, no device is attached, or
                authorization does not complete within ``auth_timeout``
        """
        await self._adb("start-server")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.auth_timeout
        auth_notified = False
        state = None

        while True:
            devices = parse_devices(await self._adb("devices"))
            if selector:
                match = [d for d in devices if d[0] == selector]
            else:
                match = devices[:1]
            if not match:
                raise DeviceConnectionError(
                    f"Device {selector} not found." if selector else "No USB device found."
                )

            serial, state = match[0]
            if state == "device":
                self.logger.info(f"Connected to {serial}")
                return AdbSession(self.adb_path, serial)

            if state == "unauthorized" and not auth_notified:
                auth_notified = True
                self.logger.info(f"Device {serial} awaiting authorization")
                if on_auth_pending:
                    on_auth_pending()

            if loop.time() >= deadline:
                raise DeviceConnectionError(
                    f"Device {serial} not ready after {self.auth_timeout:.0f}s (state: {state})."
                )
            await asyncio.sleep(self.poll_interval)
