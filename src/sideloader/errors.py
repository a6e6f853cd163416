"""Error taxonomy for install attempts.

Every fatal error carries a stable ``kind`` code that is shown next to the
message in the attempt log and in ``GET /progress``.
"""


class InstallerError(Exception):
    """Base class for errors that end an install attempt."""

    kind = "INSTALLER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class DeviceConnectionError(InstallerError):
    """Transport, permission or authorization failure while connecting."""

    kind = "CONNECTION_FAILED"


class NotConnectedError(InstallerError):
    """A device operation was requested without an active session."""

    kind = "NOT_CONNECTED"

    def __init__(self, message: str = "No device connected. Connect first."):
        super().__init__(message)


class ManifestFormatError(InstallerError):
    """release.manifest is missing a required structural element."""

    kind = "MANIFEST_INVALID"


class FileResolutionError(InstallerError):
    """A path named by the manifest is absent from the selected files."""

    kind = "FILE_NOT_FOUND"

    def __init__(self, manifest_path: str):
        super().__init__(f"File not found in selected files: {manifest_path}")
        self.manifest_path = manifest_path


class ReleaseResolutionError(InstallerError):
    """No eligible release or installable asset could be found."""

    kind = "RELEASE_UNAVAILABLE"


class TransferError(InstallerError):
    """Pushing a file to the device failed."""

    kind = "TRANSFER_FAILED"


class CommandError(InstallerError):
    """Running a command on the device failed."""

    kind = "COMMAND_FAILED"


def describe_error(exc: BaseException) -> str:
    """Format an exception as ``KIND: message`` for status and logs."""
    kind = getattr(exc, "kind", "INTERNAL_ERROR")
    message = str(exc) or exc.__class__.__name__
    return f"{kind}: {message}"
