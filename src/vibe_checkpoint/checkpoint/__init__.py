"""Checkpoint System for vibe-checkpoint

This module provides full-snapshot checkpoints of a working tree with:
- Checksummed snapshot envelopes (gzip or zstd compression)
- Per-checkpoint directories with JSON metadata
- Rollback to any prior snapshot
- Diffs between snapshots
"""

from .serializer import (
    StateSerializer,
    EncodeOptions,
    EncodeResult,
    DecodeResult,
    EnvelopeMetadata,
    EnvelopeFormat,
    CompressionKind,
    CompressionStats,
    checksum,
)
from .diff import ChangeSet, ChangeType, FileChange, compute_diff
from .workspace import FileLister, GitFileLister, StaticFileLister, WorkingTree
from .checkpoint import (
    CheckpointManager,
    Checkpoint,
    CheckpointMetadata,
    CheckpointInfo,
    CheckpointPriority,
    CheckpointStatus,
    CheckpointStats,
    CreateCheckpointOptions,
    RollbackOptions,
    RollbackResult,
    format_size,
    format_timestamp,
)

__all__ = [
    "StateSerializer",
    "EncodeOptions",
    "EncodeResult",
    "DecodeResult",
    "EnvelopeMetadata",
    "EnvelopeFormat",
    "CompressionKind",
    "CompressionStats",
    "checksum",
    "ChangeSet",
    "ChangeType",
    "FileChange",
    "compute_diff",
    "FileLister",
    "GitFileLister",
    "StaticFileLister",
    "WorkingTree",
    "CheckpointManager",
    "Checkpoint",
    "CheckpointMetadata",
    "CheckpointInfo",
    "CheckpointPriority",
    "CheckpointStatus",
    "CheckpointStats",
    "CreateCheckpointOptions",
    "RollbackOptions",
    "RollbackResult",
    "format_size",
    "format_timestamp",
]
