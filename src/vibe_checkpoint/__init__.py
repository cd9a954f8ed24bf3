"""
vibe-checkpoint - Checkpoint and state-snapshot subsystem for a CLI coding assistant.

This package captures point-in-time snapshots of a working tree with:
- Compressed, checksummed snapshot envelopes
- A per-directory checkpoint store with rollback
- Structural diffs between snapshots
- Checkpoint events for interested subscribers
"""

__version__ = "0.1.0"
__author__ = "Vibe Team"

from .checkpoint import (
    CheckpointManager,
    Checkpoint,
    CheckpointInfo,
    CreateCheckpointOptions,
    RollbackOptions,
    RollbackResult,
    StateSerializer,
    compute_diff,
)

__all__ = [
    "CheckpointManager",
    "Checkpoint",
    "CheckpointInfo",
    "CreateCheckpointOptions",
    "RollbackOptions",
    "RollbackResult",
    "StateSerializer",
    "compute_diff",
]
