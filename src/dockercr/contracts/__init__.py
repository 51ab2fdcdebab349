"""Shared contracts for cross-boundary data types.

All dataclasses, enums and exceptions that cross subsystem boundaries are
defined here. This package is a LEAF MODULE with no outbound dependencies
to core/engine/plugins.

Settings classes are NOT re-exported here - import them from
dockercr.core.config.
"""

from dockercr.contracts.checkpoint import CheckpointRecord, CheckpointResult, RestoreResult, StrategyOutcome
from dockercr.contracts.enums import (
    CgroupMode,
    CheckpointPhase,
    LifecyclePhase,
    ProcessState,
    ResourceClass,
    RestorePhase,
    Strategy,
    TargetKind,
)
from dockercr.contracts.errors import (
    CallbackError,
    CheckpointCorruptionError,
    CheckpointExhaustedError,
    ContainerRuntimeError,
    DockerCRError,
    EngineError,
    EngineUnavailableError,
    HookCommandError,
    IncompatibleCheckpointError,
    MissingMetadataError,
    PreconditionError,
    ProcessNotFoundError,
    RestoreFailedError,
    RestoreUnverifiedError,
    RuntimeUnavailableError,
    TargetBusyError,
    TargetNotFoundError,
    TargetNotRunningError,
    ZombieProcessError,
)
from dockercr.contracts.options import SnapshotOptions
from dockercr.contracts.process import CapabilityProfile, CaptureTarget, ContainerState

__all__ = [
    # checkpoint
    "CheckpointRecord",
    "CheckpointResult",
    "RestoreResult",
    "StrategyOutcome",
    # enums
    "CgroupMode",
    "CheckpointPhase",
    "LifecyclePhase",
    "ProcessState",
    "ResourceClass",
    "RestorePhase",
    "Strategy",
    "TargetKind",
    # errors
    "CallbackError",
    "CheckpointCorruptionError",
    "CheckpointExhaustedError",
    "ContainerRuntimeError",
    "DockerCRError",
    "EngineError",
    "EngineUnavailableError",
    "HookCommandError",
    "IncompatibleCheckpointError",
    "MissingMetadataError",
    "PreconditionError",
    "ProcessNotFoundError",
    "RestoreFailedError",
    "RestoreUnverifiedError",
    "RuntimeUnavailableError",
    "TargetBusyError",
    "TargetNotFoundError",
    "TargetNotRunningError",
    "ZombieProcessError",
    # options
    "SnapshotOptions",
    # process
    "CapabilityProfile",
    "CaptureTarget",
    "ContainerState",
]
