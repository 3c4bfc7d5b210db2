from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RendererConfig(BaseSettings):
    """Settings for `Renderer`, read from ``TEMPLATES_*`` environment variables."""

    directory: Path
    extension: str = Field(default=".html")
    dev_mode: bool = Field(default=False)
    asset_prefix: str = Field(default="")
    lock_timeout: float = Field(default=5.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="TEMPLATES_",
        case_sensitive=False,
    )

    @field_validator("extension")
    @classmethod
    def extension_has_dot(cls, v: str) -> str:
        if not v:
            raise ValueError("Template extension must not be empty")
        return v if v.startswith(".") else f".{v}"
