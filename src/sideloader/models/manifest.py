"""Data model for a parsed release.manifest."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

PACKAGE_EXTENSION = ".apk"
AUXILIARY_EXTENSION = ".obb"


class ManifestInfo(BaseModel):
    """What a bundle installs.

    Produced by ``parse_manifest``; an instance is always fully populated.
    """

    model_config = ConfigDict(frozen=True)

    package_name: str = Field(..., min_length=1, description="Package identifier")
    version_code: str = Field(..., min_length=1, description="Opaque version token")
    package_file_path: str = Field(
        ..., min_length=1, description="Manifest-relative path of the APK"
    )
    auxiliary_file_paths: list[str] = Field(
        ..., min_length=1, description="Manifest-relative OBB paths, in manifest order"
    )

    @field_validator("package_file_path")
    @classmethod
    def is_package_file(cls, v: str) -> str:
        if not v.lower().endswith(PACKAGE_EXTENSION):
            raise ValueError(f"Package file must end with {PACKAGE_EXTENSION}: {v}")
        return v
