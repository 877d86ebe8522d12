from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="IPLISTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "IP Lists"
    environment: str = "development"
    sqlite_path: Path = Path("data/iplists.db")
    enabled: bool = True
    enabled_on_dev: bool = True
    ip_header: Optional[str] = None
    exempt_paths: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["/ping"])
    rule_cache_ttl_seconds: float = 0.0
    audit_to_database: bool = False
    on_consistency_error: Literal["error", "deny"] = "error"

    @field_validator("exempt_paths", mode="before")
    @classmethod
    def _parse_exempt_paths(cls, value):
        if isinstance(value, str):
            if not value.strip():
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("ip_header", mode="before")
    @classmethod
    def _blank_header_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_dev(self) -> bool:
        return self.environment.strip().lower() in {"dev", "development"}

    @property
    def gate_active(self) -> bool:
        if not self.enabled:
            return False
        if self.is_dev and not self.enabled_on_dev:
            return False
        return True


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return settings
