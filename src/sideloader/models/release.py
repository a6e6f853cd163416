"""Release feed models (GitHub REST API shape)."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sideloader.models.manifest import PACKAGE_EXTENSION


class ReleaseAsset(BaseModel):
    """One downloadable file attached to a release."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field("", description="Asset file name")
    download_url: Optional[str] = Field(
        None, alias="browser_download_url", description="Direct download URL"
    )
    size: Optional[int] = Field(None, ge=0, description="Size in bytes, if known")


class ReleaseCandidate(BaseModel):
    """One entry of a release feed."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    tag_name: Optional[str] = None
    is_draft: bool = Field(False, alias="draft")
    is_prerelease: bool = Field(False, alias="prerelease")
    assets: list[ReleaseAsset] = Field(default_factory=list)

    @property
    def installable_asset(self) -> Optional[ReleaseAsset]:
        """First asset named ``*.apk`` (any case) with a usable download URL."""
        for asset in self.assets:
            if asset.name.lower().endswith(PACKAGE_EXTENSION) and asset.download_url:
                return asset
        return None

    @property
    def is_eligible(self) -> bool:
        return not self.is_draft and self.installable_asset is not None

    @property
    def display_name(self) -> str:
        return self.name or self.tag_name or "Unknown release"
