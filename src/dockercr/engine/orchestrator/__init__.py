# src/dockercr/engine/orchestrator/__init__.py
"""Orchestrator package: checkpoint and restore state machines.

Public API:
- CheckpointOrchestrator: Probe, build options, invoke, fall back, record
- RestoreOrchestrator: Load record, reconcile target, invoke, verify

Module structure:
- checkpoint.py: CheckpointOrchestrator
- restore.py: RestoreOrchestrator
- targets.py: Target resolution shared by both
"""

from dockercr.engine.orchestrator.checkpoint import CheckpointOrchestrator
from dockercr.engine.orchestrator.restore import RestoreOrchestrator

__all__ = [
    "CheckpointOrchestrator",
    "RestoreOrchestrator",
]
