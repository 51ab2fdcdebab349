# src/dockercr/core/config.py
"""
Configuration schema and loading for docker-cr.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.

Nothing here is part of the checkpoint/restore contract: engine and runtime
availability are checked at the start of every operation, not configured
away.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from dockercr.contracts.enums import LifecyclePhase, Strategy

DEFAULT_CONTAINER_STRATEGIES: tuple[Strategy, ...] = (
    Strategy.DIRECT_CONTAINER_AWARE,
    Strategy.DIRECT_MINIMAL,
)
DEFAULT_PROCESS_STRATEGIES: tuple[Strategy, ...] = (Strategy.DIRECT_MINIMAL,)


def validate_strategy_chain(chain: list[Strategy], *, for_containers: bool) -> list[Strategy]:
    """Check a fallback chain is usable.

    Raises:
        ValueError: If the chain is empty, repeats a strategy, or asks a bare
            process to delegate to the container runtime.
    """
    if not chain:
        raise ValueError("fallback chain must contain at least one strategy")
    duplicates = {s.value for s in chain if chain.count(s) > 1}
    if duplicates:
        raise ValueError(f"fallback chain repeats strategies: {sorted(duplicates)}")
    if not for_containers and Strategy.CONTAINER_NATIVE_DELEGATE in chain:
        raise ValueError("container-native-delegate cannot checkpoint a bare process")
    return chain


class EngineSettings(BaseModel):
    """Checkpoint engine (CRIU) configuration."""

    model_config = {"frozen": True}

    criu_path: str = Field(default="criu", description="Engine executable, resolved on PATH if not absolute")
    log_level: int = Field(default=4, ge=0, le=4, description="Engine log verbosity (0-4)")
    ghost_limit: int = Field(
        default=1048576,
        gt=0,
        description="Largest unlinked-but-open file the engine inlines into the image, in bytes",
    )


class RuntimeSettings(BaseModel):
    """Container runtime (Docker Engine API) configuration."""

    model_config = {"frozen": True}

    socket_path: Path = Field(default=Path("/var/run/docker.sock"), description="Docker daemon unix socket")
    api_version: str = Field(default="v1.41", description="Docker Engine API version prefix")
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    stop_grace_seconds: int = Field(default=10, ge=0, description="Grace period before a stop is forced")
    placeholder_entrypoint: list[str] = Field(
        default_factory=lambda: ["sleep", "infinity"],
        description="Entrypoint of the shell container recreated to host restored namespaces",
    )

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v: str) -> str:
        if not v.startswith("v"):
            raise ValueError(f"api_version must look like 'v1.41', got {v!r}")
        return v

    @field_validator("placeholder_entrypoint")
    @classmethod
    def validate_placeholder(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("placeholder_entrypoint must name a command")
        return v


class CheckpointSettings(BaseModel):
    """Checkpoint orchestration configuration.

    The strategy order is configurable. Whether container-native delegation
    should be preferred over direct engine invocation is a deployment
    choice; the default chain does not include it.
    """

    model_config = {"frozen": True}

    container_strategies: list[Strategy] = Field(
        default_factory=lambda: list(DEFAULT_CONTAINER_STRATEGIES),
        description="Fallback chain for container targets, tried in order",
    )
    process_strategies: list[Strategy] = Field(
        default_factory=lambda: list(DEFAULT_PROCESS_STRATEGIES),
        description="Fallback chain for bare-process targets, tried in order",
    )
    leave_running: bool = Field(default=True, description="Leave the source running unless relocating")
    lock_dir: Path = Field(
        default=Path("/run/lock/docker-cr"),
        description="Directory holding per-target lock files",
    )

    @field_validator("container_strategies")
    @classmethod
    def validate_container_chain(cls, v: list[Strategy]) -> list[Strategy]:
        return validate_strategy_chain(v, for_containers=True)

    @field_validator("process_strategies")
    @classmethod
    def validate_process_chain(cls, v: list[Strategy]) -> list[Strategy]:
        return validate_strategy_chain(v, for_containers=False)


class VerifySettings(BaseModel):
    """Post-restore verification polling bounds."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=10, gt=0, description="Maximum inspect polls")
    backoff_seconds: float = Field(default=0.5, ge=0, description="Pause between polls")
    timeout_seconds: float = Field(default=15.0, gt=0, description="Overall verification deadline")


class DockerCRSettings(BaseModel):
    """Top-level docker-cr configuration.

    Every section has defaults, so an empty settings file (or none at all)
    is valid.
    """

    model_config = {"frozen": True}

    engine: EngineSettings = Field(default_factory=EngineSettings, description="Checkpoint engine")
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings, description="Container runtime")
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings, description="Checkpoint orchestration")
    verify: VerifySettings = Field(default_factory=VerifySettings, description="Restore verification")
    hooks: dict[LifecyclePhase, list[str]] = Field(
        default_factory=dict,
        description="External command to run at each lifecycle phase",
    )

    @field_validator("hooks")
    @classmethod
    def validate_hook_commands(cls, v: dict[LifecyclePhase, list[str]]) -> dict[LifecyclePhase, list[str]]:
        empty = [phase.value for phase, command in v.items() if not command]
        if empty:
            raise ValueError(f"hook commands must not be empty: {empty}")
        return v

    @model_validator(mode="after")
    def validate_verify_window(self) -> "DockerCRSettings":
        """A backoff longer than the deadline would allow a single poll only."""
        if self.verify.backoff_seconds > self.verify.timeout_seconds:
            raise ValueError("verify.backoff_seconds must not exceed verify.timeout_seconds")
        return self


# Dynaconf bookkeeping keys that must not reach the Pydantic model
_INTERNAL_KEYS = frozenset({"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES", "SETTINGS_FILE", "ENVVAR_PREFIX"})


def _lowercase_keys(value: Any) -> Any:
    """Dynaconf upper-cases keys at every level; Pydantic fields are lower case.

    Hook phase names are lower-case enum values, so nested dict keys are
    lowered as well.
    """
    if isinstance(value, dict):
        return {str(k).lower(): _lowercase_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lowercase_keys(item) for item in value]
    return value


def load_settings(config_path: Path | None = None) -> DockerCRSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (DOCKERCR_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: DOCKERCR_RUNTIME__SOCKET_PATH for nested keys.

    Args:
        config_path: Path to YAML configuration file, or None for
            environment and defaults only

    Returns:
        Validated DockerCRSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="DOCKERCR",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,  # the CLI loads .env itself
        merge_enabled=True,
    )

    raw_config = {k.lower(): _lowercase_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in _INTERNAL_KEYS}

    return DockerCRSettings(**raw_config)
