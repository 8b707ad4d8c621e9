from __future__ import annotations

"""
Configuration loader for zkclaim.

- Reads environment variables (optionally from `.env`) via pydantic-settings.
- ``load_settings()`` builds one explicit :class:`Settings` object at process
  start; every component receives it (or the values it needs) through its
  constructor. Nothing in the package reads the environment on its own.

Environment variables:
    RELAYER_API                   (str, required)       : Relay base URL, e.g. https://relayer-api.example/api/v1
    RELAYER_KEY                   (str, required)       : Relay API key (path segment of every relay call)
    CHAIN_ID                      (int, default 0)      : Non-zero enables cross-chain aggregation
    RELAY_TIMEOUT_S               (float, default 30)   : Per-request timeout

Polling:
    POLL_MAX_ATTEMPTS             (int, default 30)
    POLL_INTERVAL_DIRECT_S        (float, default 5)    : Target "Finalized"
    POLL_INTERVAL_AGGREGATING_S   (float, default 20)   : Target "Aggregated"
    POLL_RETRY_INTERVAL_S         (float, default 5)    : Back-off after HTTP 503
    POLL_DEADLINE_S               (float, default 900)  : Wall-clock bound for one poll

Artifacts & storage:
    BUILD_DIR                     (str, default "./build")    : <role>/<role>.wasm, <role>_final.zkey, <role>_vk.json
    STORAGE_DIR                   (str, default "./.zkclaim") : VK cache and aggregation receipts
    SNARKJS_BIN                   (str, default "snarkjs")
    PROOF_TIMEOUT_S               (float, default 600)  : Bound on one snarkjs fullprove run
    PROOFS_DIR                    (str, default "./proofs")  : <role>/proof.json + public.json for saved-proof checks
    AGGREGATION_ROLE              (str, default "patient")

Logging:
    LOG_LEVEL                     (str, default "INFO")
    LOG_FORMAT                    (str, default "json")
"""

from pathlib import Path
from typing import Any, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models.proofs import TargetStatus

ROLES = ("doctor", "patient")


class Settings(BaseSettings):
    # Relay
    relayer_api: Optional[str] = Field(default=None, description="Relay base URL")
    relayer_key: Optional[str] = Field(default=None, description="Relay API key")
    chain_id: int = Field(default=0, ge=0, description="Non-zero enables aggregation")
    relay_timeout_s: float = Field(default=30.0, gt=0)

    # Polling
    poll_max_attempts: int = Field(default=30, ge=1)
    poll_interval_direct_s: float = Field(default=5.0, ge=0)
    poll_interval_aggregating_s: float = Field(default=20.0, ge=0)
    poll_retry_interval_s: float = Field(default=5.0, ge=0)
    poll_deadline_s: float = Field(default=900.0, gt=0)

    # Artifacts & storage
    build_dir: Path = Path("./build")
    storage_dir: Path = Path("./.zkclaim")
    snarkjs_bin: str = "snarkjs"
    proof_timeout_s: float = Field(default=600.0, gt=0)
    proofs_dir: Path = Path("./proofs")
    aggregation_role: str = "patient"

    # Logging
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_format: str = Field("json", description="json or console")

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", case_sensitive=False, extra="ignore"
    )

    @field_validator("chain_id", mode="before")
    @classmethod
    def _blank_chain_id(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return 0
        return v

    @field_validator("relayer_api", "relayer_key", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("relayer_api")
    @classmethod
    def _http_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.lower().startswith(("http://", "https://")):
            raise ValueError("RELAYER_API must be an http(s) URL")
        return v

    @field_validator("aggregation_role")
    @classmethod
    def _known_role(cls, v: str) -> str:
        if v not in ROLES:
            raise ValueError(f"AGGREGATION_ROLE must be one of {ROLES}")
        return v

    # --- derived --------------------------------------------------------------

    @property
    def relay_base_url(self) -> str:
        return (self.relayer_api or "").rstrip("/")

    @property
    def aggregation_enabled(self) -> bool:
        return self.chain_id != 0

    @property
    def target_status(self) -> TargetStatus:
        return TargetStatus.AGGREGATED if self.aggregation_enabled else TargetStatus.FINALIZED


def load_settings(*, env_file: Optional[str] = ".env", **overrides: Any) -> Settings:
    """
    Build and validate the process settings.

    Raises ConfigurationError when the relay URL or key is missing, or when any
    value fails validation. Call once at startup and pass the result around.
    """
    try:
        settings = Settings(_env_file=env_file, **overrides)  # type: ignore[call-arg]
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigurationError(f"invalid configuration: {e.error_count()} error(s) in {', '.join(fields)}", missing=fields) from e

    missing = [name.upper() for name in ("relayer_api", "relayer_key") if not getattr(settings, name)]
    if missing:
        raise ConfigurationError(f"missing required configuration: {', '.join(missing)}", missing=missing)
    return settings


__all__ = ["Settings", "load_settings", "ROLES"]
