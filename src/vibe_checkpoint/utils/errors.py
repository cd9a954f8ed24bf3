"""
Error handling framework for vibe-checkpoint.

This module provides:
- Hierarchical exception classes
- Error context preservation
- Machine-readable reasons for codec and checkpoint failures
- Structured error responses for callers that render failures
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import traceback


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    SYSTEM = "system"
    STORAGE = "storage"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    INTEGRITY = "integrity"
    CHECKPOINT = "checkpoint"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None


@dataclass
class ErrorInfo:
    """Structured error information."""
    code: str
    message: str
    severity: ErrorSeverity
    category: ErrorCategory
    context: ErrorContext
    reason: Optional[str] = None
    cause: Optional[Exception] = None
    suggestions: List[str] = field(default_factory=list)


class VibeError(Exception):
    """Base exception for all vibe-checkpoint errors."""

    code: str = "VIBE_ERROR"
    default_message: str = "An error occurred in vibe-checkpoint"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        """Initialize error."""
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs

        # Capture stack trace of the exception being handled, if any
        if not self.context.stack_trace and cause is not None:
            self.context.stack_trace = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

        super().__init__(self.message)

    @property
    def reason(self) -> Optional[str]:
        """Machine-readable failure reason, if the error type defines one."""
        return None

    def to_info(self) -> ErrorInfo:
        """Convert to structured error info."""
        return ErrorInfo(
            code=self.code,
            message=self.message,
            severity=self.severity,
            category=self.category,
            context=self.context,
            reason=self.reason,
            cause=self.cause,
            suggestions=self.get_suggestions()
        )

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        info = self.to_info()
        return {
            "success": False,
            "error": {
                "code": info.code,
                "reason": info.reason,
                "message": info.message,
                "severity": info.severity.value,
                "category": info.category.value,
                "suggestions": info.suggestions,
                "context": {
                    "timestamp": info.context.timestamp.isoformat(),
                    "session_id": info.context.session_id,
                    "component": info.context.component,
                    "operation": info.context.operation,
                    "metadata": info.context.metadata
                }
            }
        }


class ConfigurationError(VibeError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Verify VIBE_* environment variables"
        ]


class StorageError(VibeError):
    """Storage and file I/O errors."""
    code = "STORAGE_ERROR"
    default_message = "Storage error occurred"
    category = ErrorCategory.STORAGE


class ValidationError(VibeError):
    """Input validation errors."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return [
            f"Check the value of field '{self.field}'",
            f"Ensure it meets the constraint: {self.constraint}"
        ]


# Codec errors

class EncodeReason(Enum):
    """Why a snapshot could not be encoded."""
    ALL_FILES_EXCLUDED = "all-files-excluded"
    COMPRESSION_FAILED = "compression-failed"


class DecodeReason(Enum):
    """Why an envelope could not be decoded."""
    CORRUPT_HEADER = "corrupt-header"
    CHECKSUM_MISMATCH = "checksum-mismatch"
    MALFORMED_PAYLOAD = "malformed-payload"


class EncodeError(VibeError):
    """Snapshot could not be turned into an envelope."""
    code = "ENCODE_ERROR"
    default_message = "Failed to encode snapshot"
    category = ErrorCategory.STORAGE

    def __init__(self, reason: EncodeReason, message: Optional[str] = None, **kwargs):
        self._reason = reason
        super().__init__(message or f"Failed to encode snapshot: {reason.value}", **kwargs)

    @property
    def reason(self) -> str:
        return self._reason.value


class DecodeError(VibeError):
    """Envelope is corrupt or malformed.

    Decoding fails closed: no partial mapping is ever returned alongside
    this error.
    """
    code = "DECODE_ERROR"
    default_message = "Failed to decode snapshot"
    category = ErrorCategory.INTEGRITY
    severity = ErrorSeverity.CRITICAL

    def __init__(self, reason: DecodeReason, message: Optional[str] = None, **kwargs):
        self._reason = reason
        super().__init__(message or f"Failed to decode snapshot: {reason.value}", **kwargs)

    @property
    def reason(self) -> str:
        return self._reason.value

    def get_suggestions(self) -> List[str]:
        if self._reason is DecodeReason.CHECKSUM_MISMATCH:
            return ["The envelope was modified or truncated on disk; restore from another checkpoint"]
        return []


# Store errors

class CheckpointReason(Enum):
    """Why a checkpoint operation failed."""
    NOT_FOUND = "not-found"
    ALREADY_RESTORED = "already-restored"
    STORAGE_MISSING = "storage-missing"
    ENCODE_FAILED = "encode-failed"
    RESTORE_FAILED = "restore-failed"
    UNSAFE_PATH = "unsafe-path"


class CheckpointError(VibeError):
    """Checkpoint store operation failed."""
    code = "CHECKPOINT_ERROR"
    default_message = "Checkpoint operation failed"
    category = ErrorCategory.CHECKPOINT

    def __init__(
        self,
        reason: CheckpointReason,
        message: Optional[str] = None,
        checkpoint_id: Optional[str] = None,
        **kwargs
    ):
        self._reason = reason
        self.checkpoint_id = checkpoint_id
        super().__init__(message or f"Checkpoint operation failed: {reason.value}", **kwargs)
        if checkpoint_id:
            self.context.metadata.setdefault("checkpoint_id", checkpoint_id)

    @property
    def reason(self) -> str:
        return self._reason.value

    def get_suggestions(self) -> List[str]:
        if self._reason is CheckpointReason.ALREADY_RESTORED:
            return ["Pass force=True to restore the checkpoint again"]
        if self._reason is CheckpointReason.NOT_FOUND:
            return ["List checkpoints to find a valid id"]
        return []


# Export public API
__all__ = [
    # Base classes
    'VibeError',
    'ErrorContext',
    'ErrorInfo',
    'ErrorSeverity',
    'ErrorCategory',

    # Error types
    'ConfigurationError',
    'StorageError',
    'ValidationError',
    'EncodeError',
    'EncodeReason',
    'DecodeError',
    'DecodeReason',
    'CheckpointError',
    'CheckpointReason',
]
