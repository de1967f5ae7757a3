"""
Engine settings — retry, concurrency and runtime knobs.

Resolved in precedence order:
    CLI flag  >  PROVISIONCTL_* env var  >  unit file ``settings:``  >  defaults

The unit file's ``settings`` mapping is validated by the same model, so
a typo there is a configuration error rather than a silent default.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from provisionctl.core.errors import ConfigurationError
from provisionctl.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "~/.local/state/provisionctl"

# env var → settings field
ENV_OVERRIDES = {
    "PROVISIONCTL_MAX_RETRIES": "max_retries",
    "PROVISIONCTL_CONCURRENCY": "concurrency",
    "PROVISIONCTL_STATE_DIR": "state_dir",
}


class EngineSettings(BaseModel):
    """Runtime settings for one run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: int = Field(default=2, ge=0)
    backoff: Literal["fixed", "exponential"] = "exponential"
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    concurrency: int = Field(default=1, ge=1)
    grace_timeout: float = Field(default=10.0, ge=0)
    command_timeout: int = Field(default=900, ge=1)
    state_dir: str = DEFAULT_STATE_DIR

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff=self.backoff,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )

    def with_overrides(self, **overrides: Any) -> EngineSettings:
        """New settings with non-None overrides applied (validated)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if not values:
            return self
        return _validated({**self.model_dump(), **values}, source="overrides")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def settings_from_mapping(data: dict[str, Any] | None) -> EngineSettings:
    """Validate the unit file's ``settings:`` mapping."""
    if data is None:
        return EngineSettings()
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"'settings' must be a mapping, got {type(data).__name__}"
        )
    return _validated(data, source="settings")


def env_overrides(environ: dict[str, str] | None = None) -> dict[str, str]:
    """Settings fields present in the environment."""
    environ = os.environ if environ is None else environ
    found = {}
    for var, field in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            found[field] = value
    return found


def resolve_settings(
    file_settings: EngineSettings | None = None,
    environ: dict[str, str] | None = None,
    **cli_overrides: Any,
) -> EngineSettings:
    """Merge defaults, unit file, environment and CLI flags."""
    settings = file_settings or EngineSettings()

    from_env = env_overrides(environ)
    if from_env:
        logger.debug("Settings from environment: %s", ", ".join(sorted(from_env)))
        settings = _validated({**settings.model_dump(), **from_env}, source="environment")

    return settings.with_overrides(**cli_overrides)


def _validated(data: dict[str, Any], source: str) -> EngineSettings:
    try:
        return EngineSettings.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid {source}: {problems}") from e
