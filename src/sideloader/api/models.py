"""Pydantic models for HTTP API requests and responses."""

from typing import Any, Optional
from pydantic import BaseModel, Field, model_validator

from sideloader.models.status import StageEnum


class ConnectRequest(BaseModel):
    """POST /api/v1.0/connect payload.

    Example:
        {"serial": "1WMHH8123A0456"}
    """

    serial: Optional[str] = Field(
        None, description="adb serial; first attached device if omitted"
    )


class InstallRequest(BaseModel):
    """POST /api/v1.0/install payload.

    All fields are optional; with none set the latest release of the
    configured feed is installed.

    Example:
        {"apk_path": "/home/me/Downloads/game.apk"}
    """

    apk_path: Optional[str] = Field(None, description="Local APK file")
    url: Optional[str] = Field(
        None, pattern=r"^https?://.+", description="Direct APK download URL"
    )
    owner: Optional[str] = Field(None, description="Release feed owner")
    repo: Optional[str] = Field(None, description="Release feed repository")


class BundleInstallRequest(BaseModel):
    """POST /api/v1.0/install/bundle payload.

    Either a bundle ``folder`` or an explicit list of ``files``
    (``{"path": ..., "relative_path": "MyGame/game.apk"}``).

    Example:
        {"folder": "/home/me/Downloads/MyGame"}
    """

    folder: Optional[str] = Field(None, description="Bundle folder on this computer")
    files: Optional[list[dict[str, str]]] = Field(
        None, description="Selected files with folder-relative paths"
    )

    @model_validator(mode="after")
    def folder_or_files(self) -> "BundleInstallRequest":
        if not self.folder and not self.files:
            raise ValueError("Either 'folder' or 'files' is required")
        return self


class ProgressData(BaseModel):
    """Progress data nested in response."""

    stage: StageEnum = Field(..., description="Current attempt stage")
    progress: int = Field(..., ge=0, le=100, description="Percentage completion (0-100)")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(
        None, description="Error kind and message if stage == failed"
    )


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response."""

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")


class SuccessResponse(BaseModel):
    """Success response for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[Any] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(
        ..., description="Application-level error code (404/409/428/500/502)"
    )
    msg: str = Field(..., description="Error message with error kind prefix")
    stage: Optional[StageEnum] = Field(None, description="Current stage")
