"""
Configuration management using pydantic-settings.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bbcwallet.amounts import BBC_DECIMALS
from bbcwallet.wallet.models import CurveType


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BBC_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    symbol: str = "BBC"
    decimals: int = Field(default=BBC_DECIMALS, ge=0, le=18)

    rpc_url: str = "http://127.0.0.1:9902"
    rpc_user: str = ""
    rpc_password: str = ""
    rpc_timeout: float = Field(default=30.0, gt=0)

    # Fee is charged per transaction, in units
    fixed_fee: int = Field(default=100, ge=0)
    curve_type: CurveType = CurveType.ED25519

    # Account addresses are derived as {derivation_root}/{index}'
    derivation_root: str = "m/44'/7777'/0'/0'"

    log_level: str = "INFO"

    @field_validator("derivation_root")
    @classmethod
    def validate_derivation_root(cls, v: str) -> str:
        if not v.startswith("m"):
            raise ValueError("derivation_root must start with 'm'")
        return v.rstrip("/")


def get_settings() -> Settings:
    return Settings()
