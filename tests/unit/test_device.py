"""Unit tests for the adb-backed device session."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sideloader.errors import CommandError, DeviceConnectionError, TransferError
from sideloader.services.device import AdbDeviceBackend, AdbSession, parse_devices, read_chunks


def _process(stdout=b"", stderr=b"", returncode=0):
    """Mock asyncio subprocess with canned output."""
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.wait = AsyncMock(return_value=returncode)
    process.returncode = returncode
    process.stdin = MagicMock()
    process.stdin.drain = AsyncMock()
    return process


def _adb_responder(device_outputs):
    """side_effect for create_subprocess_exec answering start-server and devices."""
    outputs = iter(device_outputs)

    async def fake_exec(*argv, **kwargs):
        if "devices" in argv:
            return _process(stdout=next(outputs).encode())
        return _process()

    return fake_exec


async def _stream(*chunks):
    for chunk in chunks:
        yield chunk


@pytest.mark.unit
def test_parse_devices():
    output = (
        "* daemon not running; starting now at tcp:5037\n"
        "* daemon started successfully\n"
        "List of devices attached\n"
        "1WMHH8123A0456\tdevice\n"
        "2G0YC1ZF8B0012\tunauthorized\n"
        "\n"
    )

    assert parse_devices(output) == [
        ("1WMHH8123A0456", "device"),
        ("2G0YC1ZF8B0012", "unauthorized"),
    ]


@pytest.mark.unit
class TestAdbDeviceBackend:

    @pytest.fixture
    def backend(self):
        return AdbDeviceBackend(adb_path="adb", auth_timeout=1.0, poll_interval=0.001)

    @pytest.mark.asyncio
    async def test_connect_first_device(self, backend):
        fake_exec = AsyncMock(side_effect=_adb_responder(["List of devices attached\nABC\tdevice\n"]))

        with patch("asyncio.create_subprocess_exec", fake_exec):
            session = await backend.connect()

        assert session.serial == "ABC"
        assert fake_exec.call_args_list[0][0] == ("adb", "start-server")

    @pytest.mark.asyncio
    async def test_connect_by_serial(self, backend):
        listing = "List of devices attached\nABC\tdevice\nXYZ\tdevice\n"

        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=_adb_responder([listing]))):
            session = await backend.connect("XYZ")

        assert session.serial == "XYZ"

    @pytest.mark.asyncio
    async def test_auth_pending_fires_once(self, backend):
        listings = [
            "List of devices attached\nABC\tunauthorized\n",
            "List of devices attached\nABC\tunauthorized\n",
            "List of devices attached\nABC\tdevice\n",
        ]
        on_auth_pending = MagicMock()

        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=_adb_responder(listings))):
            session = await backend.connect(on_auth_pending=on_auth_pending)

        assert session.serial == "ABC"
        on_auth_pending.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_device(self, backend):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=_adb_responder(["List of devices attached\n"]))):
            with pytest.raises(DeviceConnectionError, match="No USB device"):
                await backend.connect()

    @pytest.mark.asyncio
    async def test_selected_device_missing(self, backend):
        listing = "List of devices attached\nABC\tdevice\n"

        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=_adb_responder([listing]))):
            with pytest.raises(DeviceConnectionError, match="XYZ"):
                await backend.connect("XYZ")

    @pytest.mark.asyncio
    async def test_authorization_timeout(self):
        backend = AdbDeviceBackend(auth_timeout=0.01, poll_interval=0.005)

        async def fake_exec(*argv, **kwargs):
            if "devices" in argv:
                return _process(stdout=b"List of devices attached\nABC\tunauthorized\n")
            return _process()

        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=fake_exec)):
            with pytest.raises(DeviceConnectionError, match="unauthorized"):
                await backend.connect()

    @pytest.mark.asyncio
    async def test_adb_missing(self, backend):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("adb"))):
            with pytest.raises(DeviceConnectionError, match="adb not available"):
                await backend.connect()

    @pytest.mark.asyncio
    async def test_adb_server_failure(self, backend):
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=_process(stderr=b"cannot bind", returncode=1))):
            with pytest.raises(DeviceConnectionError, match="cannot bind"):
                await backend.connect()


@pytest.mark.unit
class TestAdbSession:

    @pytest.fixture
    def session(self):
        return AdbSession("adb", "ABC")

    @pytest.mark.asyncio
    async def test_run_command_quotes_arguments(self, session):
        fake_exec = AsyncMock(return_value=_process(stdout=b"Success\n"))

        with patch("asyncio.create_subprocess_exec", fake_exec):
            out = await session.run_command(["mkdir", "-p", "/sdcard/Android/obb/My Game"])

        assert out == "Success\n"
        assert fake_exec.call_args[0] == (
            "adb", "-s", "ABC", "shell", "mkdir -p '/sdcard/Android/obb/My Game'",
        )

    @pytest.mark.asyncio
    async def test_remote_failure_output_returned(self, session):
        """A non-zero remote exit is not an error: the output is advisory."""
        process = _process(stdout=b"Failure [INSTALL_FAILED_OLDER_SDK]\n", returncode=1)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            out = await session.run_command(["pm", "install", "-r", "/data/local/tmp/a.apk"])

        assert "INSTALL_FAILED_OLDER_SDK" in out

    @pytest.mark.asyncio
    async def test_stderr_returned_when_stdout_empty(self, session):
        process = _process(stderr=b"rm: /x: Permission denied\n", returncode=1)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            out = await session.run_command(["rm", "-f", "/x"])

        assert out == "rm: /x: Permission denied"

    @pytest.mark.asyncio
    async def test_adb_error_raises(self, session):
        process = _process(stderr=b"error: device 'ABC' not found\n", returncode=1)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(CommandError, match="not found"):
                await session.run_command(["getprop", "ro.product.model"])

    @pytest.mark.asyncio
    async def test_lost_device_raises(self, session):
        process = _process(stderr=b"adb: device 'ABC' not found\n", returncode=1)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(CommandError, match="not found"):
                await session.run_command(["pm", "install", "-r", "/data/local/tmp/a.apk"])

    @pytest.mark.asyncio
    async def test_closed_session_rejects_commands(self, session):
        await session.disconnect()
        await session.disconnect()

        assert session.closed
        with pytest.raises(CommandError):
            await session.run_command(["ls"])
        with pytest.raises(TransferError):
            await session.push_file("/data/local/tmp/a", _stream(b"x"), 1)

    @pytest.mark.asyncio
    async def test_push_streams_chunks_with_progress(self, session):
        process = _process()
        progress = []

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as fake_exec:
            await session.push_file(
                "/data/local/tmp/1_a.apk", _stream(b"abc", b"def"), 6,
                lambda sent, total: progress.append((sent, total)),
            )

        assert fake_exec.call_args[0] == ("adb", "-s", "ABC", "exec-in", "cat > /data/local/tmp/1_a.apk")
        assert [c[0][0] for c in process.stdin.write.call_args_list] == [b"abc", b"def"]
        assert process.stdin.drain.await_count == 2
        assert progress == [(3, 6), (6, 6)]

    @pytest.mark.asyncio
    async def test_push_failure(self, session):
        process = _process(stderr=b"sh: can't create /x: Read-only file system", returncode=1)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(TransferError, match="Read-only"):
                await session.push_file("/x", _stream(b"abc"), 3)

    @pytest.mark.asyncio
    async def test_push_broken_pipe(self, session):
        process = _process(returncode=1)
        process.stdin.drain = AsyncMock(side_effect=ConnectionResetError("reset"))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(TransferError, match="interrupted"):
                await session.push_file("/x", _stream(b"abc"), 3)

    @pytest.mark.asyncio
    async def test_push_cancel_kills_adb(self, session):
        process = _process()
        process.returncode = None
        started = asyncio.Event()

        async def slow_drain():
            started.set()
            await asyncio.sleep(10)

        process.stdin.drain = AsyncMock(side_effect=slow_drain)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            task = asyncio.create_task(session.push_file("/x", _stream(b"abc"), 3))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        process.kill.assert_called_once()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_read_chunks(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"x" * 10)

    chunks = [chunk async for chunk in read_chunks(path, chunk_size=4)]

    assert chunks == [b"xxxx", b"xxxx", b"xx"]
