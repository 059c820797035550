"""Configuration for the playbook engine.

Defaults can be overridden in code or through ``RW_*`` environment variables
with :meth:`EngineConfig.from_env`.
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "RW_"


class EngineConfig(BaseModel):
    """Runtime settings for the step executor and engine."""

    model_config = ConfigDict(frozen=True)

    # Step execution
    default_step_timeout_ms: int | None = Field(
        default=30000,
        gt=0,
        description="Timeout applied to steps without timeout_ms (None disables)",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay for exponential retry backoff",
    )
    retry_max_delay_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Upper bound for a single retry backoff delay",
    )
    max_checkpoints: int = Field(
        default=10,
        ge=0,
        description="Number of most recent checkpoints kept per execution",
    )

    # Engine
    max_concurrent_executions: int = Field(
        default=50,
        ge=1,
        description="Maximum number of playbook executions running at once",
    )

    # Durable fan-out
    event_stream_name: str = Field(
        default="alerts_stream",
        description="Redis stream that receives forwarded events",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis URL for durable event fan-out (disabled when unset)",
    )

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        """Build a config from ``RW_*`` environment variables.

        Unset variables keep their defaults. ``RW_DEFAULT_STEP_TIMEOUT_MS=none``
        disables the default timeout.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            raw = raw.strip()
            if raw.lower() in ("", "none", "null") and name in (
                "default_step_timeout_ms",
                "redis_url",
            ):
                values[name] = None
            else:
                values[name] = raw

        return cls.model_validate(values)
