"""kgrelay application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.  The field name is the
**lowercase** version of the env-var name (e.g. ``PORT`` → ``port``).

Typical usage::

    from kgrelay.core.settings import Settings

    settings = Settings()                 # loads from env + .env
    print(settings.workflow_base_url)     # "http://localhost:3000" (follows PORT)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

__all__ = ["Settings", "DEFAULT_CRON"]

logger = logging.getLogger(__name__)

#: Schedule used by ``/api/startAutoCron`` when the caller sends no ``time``.
DEFAULT_CRON: str = "0 2 * * *"

_HANDLERS_DIR = Path(__file__).resolve().parent.parent / "handlers"


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------
    host: str = Field(default="", description="Bind address ('' = all interfaces).")
    port: int = Field(default=3000, ge=1, le=65535, description="Listen port.")

    # ------------------------------------------------------------------
    # Downstream
    # ------------------------------------------------------------------
    upstream_base_url: str = Field(
        default="https://gateway.kugou.com",
        description="Remote API base URL used by the bundled handler modules.",
    )
    workflow_base_url: str | None = Field(
        default=None,
        description="Base URL the scheduled workflow calls; unset means this service on PORT.",
    )
    http_timeout: float = Field(default=20.0, gt=0.0, description="Read timeout in seconds.")
    http_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts per downstream call, including the first.",
    )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------
    modules_path: str = Field(
        default=str(_HANDLERS_DIR),
        description="Directory scanned for handler modules.",
    )
    route_overrides: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict,
        description="File name → explicit route path (JSON object in env).",
    )

    # ------------------------------------------------------------------
    # Scheduled workflow
    # ------------------------------------------------------------------
    default_cron: str = Field(default=DEFAULT_CRON, description="Default job schedule.")
    bonus_claim_attempts: int = Field(
        default=8,
        ge=1,
        description="Maximum bonus-claim calls per tick.",
    )
    bonus_delay_min: float = Field(
        default=30.0,
        ge=0.0,
        description="Lower bound of the randomised pause between bonus claims.",
    )
    bonus_delay_max: float = Field(
        default=40.0,
        ge=0.0,
        description="Upper bound of the randomised pause between bonus claims.",
    )
    quota_exhausted_code: int = Field(
        default=30002,
        description="error_code meaning the daily bonus quota is used up.",
    )

    # ------------------------------------------------------------------
    # Proxy
    # ------------------------------------------------------------------
    trust_proxy: bool = Field(
        default=False,
        description="Take caller IP and scheme from X-Forwarded-* headers.",
    )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    cache_ttl_seconds: float = Field(
        default=120.0,
        ge=0.0,
        description="Lifetime of cached GET responses (0 disables caching).",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("route_overrides", mode="before")
    @classmethod
    def _parse_overrides(cls, v: str | dict[str, str]) -> dict[str, str]:
        """Accept a JSON object string **or** an already-parsed mapping."""
        if isinstance(v, str):
            if not v.strip():
                return {}
            parsed = json.loads(v)
            if not isinstance(parsed, dict):
                raise ValueError("route_overrides must be a JSON object")
            return parsed
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    @field_validator("upstream_base_url", "workflow_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str | None) -> str | None:
        return v.rstrip("/") if v is not None else None

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_bonus_delay(self) -> Settings:
        """Ensure min ≤ max for the bonus-claim pause."""
        if self.bonus_delay_min > self.bonus_delay_max:
            raise ValueError(
                f"bonus_delay_min ({self.bonus_delay_min}) "
                f"> bonus_delay_max ({self.bonus_delay_max})"
            )
        return self

    @model_validator(mode="after")
    def _default_workflow_base_url(self) -> Settings:
        if not self.workflow_base_url:
            self.workflow_base_url = f"http://localhost:{self.port}"
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def modules_path_resolved(self) -> Path:
        """Return the handler directory as a resolved :class:`~pathlib.Path`."""
        return Path(self.modules_path).resolve()
