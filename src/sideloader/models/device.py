"""Connected device and install outcome models."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class DeviceInfo(BaseModel):
    """Identity of the connected headset."""

    serial: str = Field(..., description="adb serial")
    manufacturer: str = Field("", description="ro.product.manufacturer")
    model: str = Field("", description="ro.product.model")

    @property
    def label(self) -> str:
        return f"{self.manufacturer or 'Unknown'} {self.model}".strip()


class InstallResult(BaseModel):
    """Outcome of a completed install attempt.

    ``success`` is inferred from the ``pm install`` output and is advisory.
    """

    package_file: str = Field(..., description="Local package file name")
    remote_path: str = Field(..., description="Temporary device path used for the push")
    output: str = Field("", description="Verbatim pm install output")
    success: bool = Field(False, description="Output contained the success token")
    package_name: Optional[str] = Field(None, description="Bundle package name")
    auxiliary_files: list[str] = Field(
        default_factory=list, description="Device paths of pushed auxiliary files"
    )


class SelectedFile(BaseModel):
    """A locally selected file.

    ``relative_path`` mirrors what a folder picker reports
    (``MyGame/release.manifest``); it is empty for individually picked files.
    """

    path: Path
    relative_path: str = ""

    @property
    def name(self) -> str:
        return self.path.name


class PackageSource(BaseModel):
    """Where the package of a single-package install comes from.

    Precedence: local ``path``, then direct ``url``, then the release feed
    ``owner``/``repo`` (configured defaults when unset).
    """

    path: Optional[Path] = None
    url: Optional[str] = Field(None, pattern=r"^https?://.+")
    owner: Optional[str] = None
    repo: Optional[str] = None
