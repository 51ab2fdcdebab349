"""Checkpoint record and orchestration outcome contracts."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import ClassVar

from dockercr.contracts.enums import ResourceClass, Strategy, TargetKind
from dockercr.contracts.process import CaptureTarget


@dataclass(frozen=True)
class CheckpointRecord:
    """Durable record of one completed checkpoint.

    Owned by CheckpointMetadataStore for the life of the checkpoint
    directory. Immutable once written: checkpointing the same target again
    creates a new record in a new directory.

    Format Versions:
        (none): Files written by legacy shell tooling. They carry no
            STRATEGY, so they cannot be restored without guessing.
        Version 1: Versioned KEY=VALUE record (current)
    """

    CURRENT_FORMAT_VERSION: ClassVar[int] = 1

    checkpoint_id: str
    target_kind: TargetKind
    pid: int
    strategy: Strategy
    created_at: datetime
    checkpoint_dir: Path
    container_id: str | None = None
    container_name: str | None = None
    image: str | None = None
    resources: frozenset[ResourceClass] = frozenset()
    leave_running: bool = True
    runtime_checkpoint_id: str | None = None
    format_version: int = CURRENT_FORMAT_VERSION

    def __post_init__(self) -> None:
        if self.created_at.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")
        if self.target_kind == TargetKind.CONTAINER and not self.image:
            raise ValueError("container checkpoint records require an image reference")
        if self.strategy == Strategy.CONTAINER_NATIVE_DELEGATE and not self.runtime_checkpoint_id:
            raise ValueError("delegated checkpoints must record the runtime checkpoint id")

    @property
    def original_target(self) -> CaptureTarget:
        """The target as it was when it was captured."""
        if self.target_kind == TargetKind.PROCESS:
            return CaptureTarget.for_process(self.pid)
        return CaptureTarget(
            kind=TargetKind.CONTAINER,
            pid=self.pid,
            container_id=self.container_id,
            container_name=self.container_name or self.container_id,
            image=self.image,
        )


@dataclass(frozen=True)
class StrategyOutcome:
    """Result of one orchestration attempt with one strategy.

    Failures carry the error message and the engine's raw diagnostic output.
    """

    strategy: Strategy
    succeeded: bool
    error: str | None = None
    diagnostic: str | None = None

    def __post_init__(self) -> None:
        if self.succeeded and self.error is not None:
            raise ValueError("a successful outcome must not carry an error")
        if not self.succeeded and self.error is None:
            raise ValueError("a failed outcome must say why it failed")

    @classmethod
    def success(cls, strategy: Strategy) -> "StrategyOutcome":
        return cls(strategy=strategy, succeeded=True)

    @classmethod
    def failure(cls, strategy: Strategy, error: str, diagnostic: str | None = None) -> "StrategyOutcome":
        return cls(strategy=strategy, succeeded=False, error=error, diagnostic=diagnostic)


@dataclass(frozen=True)
class CheckpointResult:
    """What a completed checkpoint call hands back.

    outcomes lists every attempt in order; the last one is the success.
    """

    record: CheckpointRecord
    outcomes: tuple[StrategyOutcome, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RestoreResult:
    """What a verified restore call hands back."""

    record: CheckpointRecord
    target: str
    restored_pid: int
