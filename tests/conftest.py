"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path
from typing import Optional

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sideloader.config import Settings  # noqa: E402
from sideloader.services.state_manager import StateManager  # noqa: E402


SAMPLE_MANIFEST = (
    "Game Name;Release Name;Package Name;Version Code;Last Updated;Size (MB)\n"
    "Example Game;Example Game v42;com.example.app;42;2024-01-01 00:00 UTC;3\n"
    "#filelist\n"
    "f;game.apk;1024;d41d8cd98f00b204e9800998ecf8427e\n"
    "f;main.1.obb;2048;d41d8cd98f00b204e9800998ecf8427e\n"
    "f;patch.1.obb;512;d41d8cd98f00b204e9800998ecf8427e\n"
)


class FakeSession:
    """In-memory device session recording every call in order."""

    def __init__(self, serial: str = "1WMHH8123A0456"):
        self.serial = serial
        self.closed = False
        self.calls = []
        self.outputs = {
            "getprop": "Oculus\n",
            "pm": "Performing Streamed Install\nSuccess\n",
        }
        self.failures = {}

    async def run_command(self, argv):
        self.calls.append(("run", list(argv)))
        error = self.failures.get(argv[0])
        if error is not None:
            raise error
        return self.outputs.get(argv[0], "")

    async def push_file(self, remote_path, stream, total, on_progress=None):
        data = b""
        async for chunk in stream:
            data += chunk
            if on_progress:
                on_progress(len(data), total)
        error = self.failures.get("push")
        if error is not None:
            raise error
        self.calls.append(("push", remote_path, data))

    async def disconnect(self):
        self.closed = True


class FakeBackend:
    """Device backend handing out FakeSessions."""

    def __init__(self, error: Optional[Exception] = None, auth_pending: bool = False):
        self.error = error
        self.auth_pending = auth_pending
        self.sessions = []
        self.selectors = []

    async def connect(self, selector=None, on_auth_pending=None):
        self.selectors.append(selector)
        if self.auth_pending and on_auth_pending:
            on_auth_pending()
        if self.error is not None:
            raise self.error
        session = FakeSession(selector or "1WMHH8123A0456")
        self.sessions.append(session)
        return session


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset the StateManager singleton between tests."""
    StateManager._instance = None
    yield
    StateManager._instance = None


@pytest.fixture
def settings(tmp_path):
    """Settings writing only below tmp_path."""
    return Settings(
        download_dir=str(tmp_path / "downloads"),
        log_file=str(tmp_path / "logs" / "sideloader.log"),
        github_api_url="https://api.test",
    )


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def sample_manifest_text():
    return SAMPLE_MANIFEST


@pytest.fixture
def bundle_folder(tmp_path):
    """Bundle folder ``MyGame/`` with a manifest, one APK and two OBBs."""
    folder = tmp_path / "MyGame"
    folder.mkdir()
    (folder / "release.manifest").write_text(SAMPLE_MANIFEST, encoding="utf-8")
    (folder / "game.apk").write_bytes(b"APK-BYTES")
    (folder / "main.1.obb").write_bytes(b"MAIN-OBB")
    (folder / "patch.1.obb").write_bytes(b"PATCH-OBB")
    return folder


@pytest.fixture
def apk_file(tmp_path):
    path = tmp_path / "My App v1.0 (final)!.apk"
    path.write_bytes(b"x" * 1000)
    return path


@pytest.fixture
def backend_factory():
    """Build FakeBackends with custom errors or auth behaviour."""
    return FakeBackend


@pytest.fixture
def session_factory():
    return FakeSession
