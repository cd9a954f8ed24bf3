"""Checkpoint manager implementation"""

import json
import time
import uuid
import asyncio
import shutil
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
from datetime import datetime, timezone
from dataclasses import dataclass, field
from enum import Enum

import aiofiles
import aiofiles.os

from .diff import ChangeSet, compute_diff
from .serializer import (
    CompressionKind,
    EncodeOptions,
    EnvelopeFormat,
    StateSerializer,
)
from .workspace import FileLister, GitFileLister, WorkingTree
from ..utils.config import CheckpointConfig, VibeConfig
from ..utils.logging import get_logger
from ..utils.errors import (
    CheckpointError,
    CheckpointReason,
    DecodeError,
    EncodeError,
    ErrorContext,
    StorageError,
    ValidationError,
)
from ..utils.notifications import EventBus, EventCategory

logger = get_logger(__name__)

METADATA_FILENAME = "metadata.json"
ENVELOPE_GLOB = "state.json*"


class CheckpointPriority(Enum):
    """Informational importance of a checkpoint"""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class CheckpointStatus(Enum):
    """Lifecycle state; ``obsolete`` is reserved and never set by the manager"""
    ACTIVE = "active"
    RESTORED = "restored"
    OBSOLETE = "obsolete"


@dataclass
class CheckpointMetadata:
    """Working-tree context captured with a checkpoint"""
    branch: Optional[str] = None
    revision: Optional[str] = None
    working_directory: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    custom_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "branch": self.branch,
            "revision": self.revision,
            "working_directory": self.working_directory,
            "tags": self.tags,
            "custom_data": self.custom_data
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CheckpointMetadata':
        """Create from dictionary"""
        return cls(
            branch=data.get("branch"),
            revision=data.get("revision"),
            working_directory=data.get("working_directory"),
            tags=list(data.get("tags") or []),
            custom_data=dict(data.get("custom_data") or {})
        )


@dataclass
class Checkpoint:
    """A stored snapshot of working-tree file contents"""
    id: str
    name: str
    session_id: str
    created_at: datetime
    storage_path: Path
    description: str = ""
    priority: CheckpointPriority = CheckpointPriority.NORMAL
    status: CheckpointStatus = CheckpointStatus.ACTIVE
    file_count: int = 0
    total_size: int = 0
    compressed_size: int = 0
    envelope_format: EnvelopeFormat = EnvelopeFormat.FRAMED
    metadata: CheckpointMetadata = field(default_factory=CheckpointMetadata)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "priority": self.priority.value,
            "status": self.status.value,
            "file_count": self.file_count,
            "total_size": self.total_size,
            "compressed_size": self.compressed_size,
            "envelope_format": self.envelope_format.value,
            "storage_path": str(self.storage_path),
            "metadata": self.metadata.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Checkpoint':
        """Create from dictionary"""
        created_at = datetime.fromisoformat(data["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            session_id=data["session_id"],
            created_at=created_at,
            priority=CheckpointPriority(data.get("priority", "normal")),
            status=CheckpointStatus(data.get("status", "active")),
            file_count=int(data.get("file_count", 0)),
            total_size=int(data.get("total_size", 0)),
            compressed_size=int(data.get("compressed_size", 0)),
            envelope_format=EnvelopeFormat(data.get("envelope_format", "framed")),
            storage_path=Path(data["storage_path"]),
            metadata=CheckpointMetadata.from_dict(data.get("metadata") or {})
        )


def format_size(num_bytes: int) -> str:
    """Human-readable size: ``512 B``, ``1.5 KB``, ``2.0 MB``"""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


def format_timestamp(value: datetime, now: Optional[datetime] = None) -> str:
    """Relative time for recent timestamps, local time otherwise"""
    now = now or datetime.now(timezone.utc)
    seconds = (now - value).total_seconds()

    if seconds < 60:
        return "Just now"
    if seconds < 60 * 60:
        return f"{int(seconds // 60)}m ago"
    if seconds < 24 * 60 * 60:
        return f"{int(seconds // 3600)}h ago"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class CheckpointInfo:
    """Listing view of a checkpoint"""
    id: str
    name: str
    description: str
    created_at: datetime
    created_at_formatted: str
    priority: CheckpointPriority
    status: CheckpointStatus
    file_count: int
    size_formatted: str

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint, now: Optional[datetime] = None) -> 'CheckpointInfo':
        return cls(
            id=checkpoint.id,
            name=checkpoint.name,
            description=checkpoint.description,
            created_at=checkpoint.created_at,
            created_at_formatted=format_timestamp(checkpoint.created_at, now),
            priority=checkpoint.priority,
            status=checkpoint.status,
            file_count=checkpoint.file_count,
            size_formatted=format_size(checkpoint.compressed_size)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "created_at_formatted": self.created_at_formatted,
            "priority": self.priority.value,
            "status": self.status.value,
            "file_count": self.file_count,
            "size_formatted": self.size_formatted
        }


@dataclass
class CreateCheckpointOptions:
    """Options for creating a checkpoint; branch/revision default to the file lister's"""
    name: str
    description: str = ""
    priority: CheckpointPriority = CheckpointPriority.NORMAL
    tags: List[str] = field(default_factory=list)
    branch: Optional[str] = None
    revision: Optional[str] = None
    custom_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RollbackOptions:
    """Options for restoring a checkpoint"""
    force: bool = False
    dry_run: bool = False
    target_path: Optional[Path] = None


@dataclass
class RollbackResult:
    """Outcome of a successful rollback"""
    checkpoint_id: str
    files_restored: int
    files_created: int
    files_deleted: int
    duration_ms: int
    dry_run: bool = False
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "checkpoint_id": self.checkpoint_id,
            "files_restored": self.files_restored,
            "files_created": self.files_created,
            "files_deleted": self.files_deleted,
            "duration_ms": self.duration_ms,
            "dry_run": self.dry_run
        }


@dataclass
class CheckpointStats:
    total: int = 0
    active: int = 0
    restored: int = 0
    obsolete: int = 0
    total_size: int = 0
    average_size: float = 0.0
    session_count: int = 0


def generate_checkpoint_id() -> str:
    """Time-ordered checkpoint id: ``chk-<epoch millis>-<8 hex>``"""
    return f"chk-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class CheckpointManager:
    """Manages full-snapshot checkpoints of a working tree

    Each checkpoint lives in its own directory under
    ``<data_dir>/checkpoints/<id>/`` holding ``metadata.json`` and a single
    ``state.json[.gz|.zst]`` envelope. The in-memory catalog is loaded by
    ``initialize`` and kept in sync by every mutating operation.
    """

    def __init__(
        self,
        working_directory: Union[str, Path],
        config: Optional[Union[CheckpointConfig, VibeConfig]] = None,
        file_lister: Optional[FileLister] = None,
        working_tree: Optional[WorkingTree] = None,
        serializer: Optional[StateSerializer] = None,
        event_bus: Optional[EventBus] = None
    ):
        """Initialize checkpoint manager

        Args:
            working_directory: Root of the tree being checkpointed
            config: Checkpoint configuration (defaults apply when omitted)
            file_lister: Supplies candidate files (git by default)
            working_tree: File access under the working directory
            serializer: Envelope codec
            event_bus: Optional bus receiving checkpoint events
        """
        if isinstance(config, VibeConfig):
            config = config.checkpoint

        self.working_directory = Path(working_directory).absolute()
        self.config = config or CheckpointConfig()
        self.data_dir = self.config.resolve_data_dir(self.working_directory)
        self.checkpoints_path = self.data_dir / "checkpoints"

        self.file_lister = file_lister or GitFileLister()
        self.working_tree = working_tree or WorkingTree(self.working_directory)
        self.serializer = serializer or StateSerializer()
        self.event_bus = event_bus

        # In-memory catalog
        self._checkpoints: Dict[str, Checkpoint] = {}
        self._session_index: Dict[str, List[str]] = {}
        self._checkpoint_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the storage directory and load existing checkpoints"""
        await aiofiles.os.makedirs(self.checkpoints_path, exist_ok=True)
        await self._load_checkpoints()

        logger.info(
            "checkpoint_manager_initialized",
            checkpoints=len(self._checkpoints),
            sessions=len(self._session_index),
            storage_path=str(self.checkpoints_path)
        )

    async def create_checkpoint(
        self,
        session_id: str,
        options: CreateCheckpointOptions
    ) -> Checkpoint:
        """Snapshot the working tree

        Args:
            session_id: Session the checkpoint belongs to
            options: Name, description and metadata for the checkpoint

        Returns:
            The new checkpoint, status ``active``

        Raises:
            ValidationError: empty name
            CheckpointError: encoding or writing the checkpoint failed
        """
        if not options.name or not options.name.strip():
            raise ValidationError("name", options.name, "must be a non-empty string")

        candidates = await self.file_lister.list_files(self.working_directory)
        safe_candidates = []
        for path in candidates:
            if self.working_tree.contains(path):
                safe_candidates.append(path)
            else:
                logger.warning("checkpoint_file_outside_tree", path=path)

        file_contents = await self.working_tree.read_many(safe_candidates)

        encode_options = self._encode_options()
        try:
            result = self.serializer.encode(file_contents, encode_options)
        except EncodeError as e:
            raise CheckpointError(
                CheckpointReason.ENCODE_FAILED,
                f"Failed to encode checkpoint '{options.name}': {e.message}",
                cause=e
            ) from e

        branch = options.branch
        if branch is None:
            branch = await self.file_lister.current_branch(self.working_directory)
        revision = options.revision
        if revision is None:
            revision = await self.file_lister.current_revision(self.working_directory)

        checkpoint_id = generate_checkpoint_id()
        checkpoint_dir = self.checkpoints_path / checkpoint_id
        compression = result.metadata.compression

        checkpoint = Checkpoint(
            id=checkpoint_id,
            name=options.name,
            description=options.description,
            session_id=session_id,
            created_at=result.metadata.created_at,
            priority=options.priority,
            status=CheckpointStatus.ACTIVE,
            file_count=result.metadata.file_count,
            total_size=result.metadata.total_size,
            compressed_size=result.metadata.compressed_size,
            envelope_format=encode_options.envelope_format,
            storage_path=checkpoint_dir,
            metadata=CheckpointMetadata(
                branch=branch,
                revision=revision,
                working_directory=str(self.working_directory),
                tags=list(options.tags),
                custom_data=dict(options.custom_data)
            )
        )

        # Envelope first, metadata last: a directory without metadata.json
        # is never loaded into the catalog.
        try:
            await aiofiles.os.makedirs(checkpoint_dir)
            envelope_path = checkpoint_dir / f"state.{compression.extension}"
            async with aiofiles.open(envelope_path, 'wb') as f:
                await f.write(result.data)
            await self._save_metadata(checkpoint)
        except OSError as e:
            await asyncio.to_thread(shutil.rmtree, checkpoint_dir, True)
            raise CheckpointError(
                CheckpointReason.ENCODE_FAILED,
                f"Failed to write checkpoint '{options.name}': {e}",
                checkpoint_id=checkpoint_id,
                cause=e
            ) from e

        async with self._checkpoint_lock:
            self._checkpoints[checkpoint_id] = checkpoint
            self._session_index.setdefault(session_id, []).append(checkpoint_id)

        logger.info(
            "checkpoint_created",
            checkpoint_id=checkpoint_id,
            name=checkpoint.name,
            session_id=session_id,
            files=checkpoint.file_count,
            excluded=len(result.excluded),
            total_size=checkpoint.total_size,
            compressed_size=checkpoint.compressed_size
        )

        await self._emit("checkpoint.created", {
            "checkpoint_id": checkpoint_id,
            "name": checkpoint.name,
            "session_id": session_id,
            "file_count": checkpoint.file_count
        })

        return checkpoint

    async def rollback(
        self,
        checkpoint_id: str,
        options: Optional[RollbackOptions] = None
    ) -> RollbackResult:
        """Restore a checkpoint's files

        Files are written one at a time in snapshot order. Files present on
        disk but absent from the snapshot are left alone, and a failure part
        way through leaves earlier writes in place.

        Raises:
            CheckpointError: unknown id, already restored, envelope missing,
                unsafe path or write failure
            DecodeError: the envelope is corrupt
        """
        options = options or RollbackOptions()
        start = time.monotonic()

        checkpoint = await self.get_checkpoint(checkpoint_id)
        if not checkpoint:
            raise CheckpointError(
                CheckpointReason.NOT_FOUND,
                f"Checkpoint not found: {checkpoint_id}",
                checkpoint_id=checkpoint_id
            )

        if checkpoint.status is CheckpointStatus.RESTORED and not options.force:
            raise CheckpointError(
                CheckpointReason.ALREADY_RESTORED,
                f"Checkpoint {checkpoint_id} was already restored",
                checkpoint_id=checkpoint_id
            )

        envelope_path = self._find_envelope(checkpoint.storage_path)
        if envelope_path is None:
            raise CheckpointError(
                CheckpointReason.STORAGE_MISSING,
                f"Checkpoint data missing for {checkpoint_id}",
                checkpoint_id=checkpoint_id
            )

        try:
            decoded = await self.serializer.decode_from_file(envelope_path, checkpoint.envelope_format)
        except StorageError as e:
            raise CheckpointError(
                CheckpointReason.STORAGE_MISSING,
                f"Checkpoint data missing for {checkpoint_id}",
                checkpoint_id=checkpoint_id,
                cause=e
            ) from e
        files = decoded.files

        tree = WorkingTree(options.target_path) if options.target_path else self.working_tree
        unsafe = [path for path in files if not tree.contains(path)]
        if unsafe:
            raise CheckpointError(
                CheckpointReason.UNSAFE_PATH,
                f"Checkpoint {checkpoint_id} contains paths outside {tree.root}: {', '.join(unsafe)}",
                checkpoint_id=checkpoint_id,
                context=ErrorContext(operation="rollback", metadata={"paths": unsafe})
            )

        if options.dry_run:
            logger.info("checkpoint_rollback_dry_run", checkpoint_id=checkpoint_id, files=len(files))
            return RollbackResult(
                checkpoint_id=checkpoint_id,
                files_restored=len(files),
                files_created=0,
                files_deleted=0,
                duration_ms=int((time.monotonic() - start) * 1000),
                dry_run=True
            )

        files_restored = 0
        files_created = 0
        for path, content in files.items():
            try:
                existed = await tree.write_text(path, content)
            except OSError as e:
                written = files_restored + files_created
                raise CheckpointError(
                    CheckpointReason.RESTORE_FAILED,
                    f"Failed to restore {path} after writing {written} files: {e}",
                    checkpoint_id=checkpoint_id,
                    context=ErrorContext(
                        operation="rollback",
                        metadata={"path": path, "files_written": written}
                    ),
                    cause=e
                ) from e

            if existed:
                files_restored += 1
            else:
                files_created += 1

        async with self._checkpoint_lock:
            previous_status = checkpoint.status
            checkpoint.status = CheckpointStatus.RESTORED
            try:
                await self._save_metadata(checkpoint)
            except OSError as e:
                # Catalog and metadata.json must agree
                checkpoint.status = previous_status
                written = files_restored + files_created
                raise CheckpointError(
                    CheckpointReason.RESTORE_FAILED,
                    f"Restored {written} files but failed to record status of {checkpoint_id}: {e}",
                    checkpoint_id=checkpoint_id,
                    context=ErrorContext(
                        operation="rollback",
                        metadata={"path": METADATA_FILENAME, "files_written": written}
                    ),
                    cause=e
                ) from e

        result = RollbackResult(
            checkpoint_id=checkpoint_id,
            files_restored=files_restored,
            files_created=files_created,
            files_deleted=0,
            duration_ms=int((time.monotonic() - start) * 1000)
        )

        logger.info(
            "checkpoint_restored",
            checkpoint_id=checkpoint_id,
            files_restored=files_restored,
            files_created=files_created,
            target=str(tree.root),
            duration_ms=result.duration_ms
        )

        await self._emit("checkpoint.restored", {
            "checkpoint_id": checkpoint_id,
            "files_restored": files_restored,
            "files_created": files_created
        })

        return result

    async def get_checkpoint_diff(
        self,
        checkpoint_id1: str,
        checkpoint_id2: str
    ) -> Optional[ChangeSet]:
        """Diff two checkpoints, the first treated as the older side

        Returns:
            The change set, or None if either checkpoint or its data is missing

        Raises:
            DecodeError: either envelope is corrupt
        """
        checkpoint1 = await self.get_checkpoint(checkpoint_id1)
        checkpoint2 = await self.get_checkpoint(checkpoint_id2)
        if not checkpoint1 or not checkpoint2:
            return None

        old_files = await self._read_snapshot(checkpoint1)
        new_files = await self._read_snapshot(checkpoint2)
        if old_files is None or new_files is None:
            return None

        change_set = compute_diff(old_files, new_files)
        change_set.checkpoint1 = CheckpointInfo.from_checkpoint(checkpoint1)
        change_set.checkpoint2 = CheckpointInfo.from_checkpoint(checkpoint2)
        return change_set

    async def get_checkpoint(self, checkpoint_id: str) -> Optional[Checkpoint]:
        """Get checkpoint by ID"""
        async with self._checkpoint_lock:
            return self._checkpoints.get(checkpoint_id)

    async def list_checkpoints(
        self,
        session_id: Optional[str] = None,
        status: Optional[CheckpointStatus] = None,
        tags: Optional[List[str]] = None,
        limit: Optional[int] = None
    ) -> List[CheckpointInfo]:
        """List checkpoints, newest first

        Args:
            session_id: Only checkpoints from this session
            status: Only checkpoints in this status
            tags: Only checkpoints carrying at least one of these tags
            limit: Maximum number to return

        Raises:
            ValidationError: limit is negative
        """
        if limit is not None and limit < 0:
            raise ValidationError("limit", limit, "must be zero or greater")

        async with self._checkpoint_lock:
            if session_id is not None:
                checkpoints = [
                    self._checkpoints[cid]
                    for cid in self._session_index.get(session_id, [])
                    if cid in self._checkpoints
                ]
            else:
                checkpoints = list(self._checkpoints.values())

        if status is not None:
            checkpoints = [cp for cp in checkpoints if cp.status is status]

        if tags:
            checkpoints = [
                cp for cp in checkpoints
                if any(tag in cp.metadata.tags for tag in tags)
            ]

        checkpoints.sort(key=lambda cp: (cp.created_at, cp.id), reverse=True)

        if limit is not None:
            checkpoints = checkpoints[:limit]

        now = datetime.now(timezone.utc)
        return [CheckpointInfo.from_checkpoint(cp, now) for cp in checkpoints]

    async def delete_checkpoint(self, checkpoint_id: str) -> bool:
        """Delete a checkpoint and its directory

        Returns:
            True if deleted, False if the id is unknown
        """
        async with self._checkpoint_lock:
            checkpoint = self._checkpoints.get(checkpoint_id)
            if not checkpoint:
                return False

            try:
                await asyncio.to_thread(shutil.rmtree, checkpoint.storage_path)
            except FileNotFoundError:
                logger.debug("checkpoint_directory_already_removed", checkpoint_id=checkpoint_id)
            except OSError as e:
                raise StorageError(
                    f"Failed to delete checkpoint {checkpoint_id}: {e}",
                    cause=e
                ) from e

            del self._checkpoints[checkpoint_id]
            session_ids = self._session_index.get(checkpoint.session_id, [])
            if checkpoint_id in session_ids:
                session_ids.remove(checkpoint_id)
            if not session_ids:
                self._session_index.pop(checkpoint.session_id, None)

        logger.info("checkpoint_deleted", checkpoint_id=checkpoint_id)

        await self._emit("checkpoint.deleted", {
            "checkpoint_id": checkpoint_id,
            "name": checkpoint.name,
            "session_id": checkpoint.session_id
        })

        return True

    def get_stats(self) -> CheckpointStats:
        """Get checkpoint statistics"""
        checkpoints = list(self._checkpoints.values())
        total_size = sum(cp.compressed_size for cp in checkpoints)

        return CheckpointStats(
            total=len(checkpoints),
            active=sum(1 for cp in checkpoints if cp.status is CheckpointStatus.ACTIVE),
            restored=sum(1 for cp in checkpoints if cp.status is CheckpointStatus.RESTORED),
            obsolete=sum(1 for cp in checkpoints if cp.status is CheckpointStatus.OBSOLETE),
            total_size=total_size,
            average_size=total_size / len(checkpoints) if checkpoints else 0.0,
            session_count=len(self._session_index)
        )

    async def verify_integrity(self) -> List[str]:
        """Decode every stored envelope

        Returns:
            IDs of checkpoints whose data is missing or corrupt
        """
        async with self._checkpoint_lock:
            checkpoints = list(self._checkpoints.values())

        failed = []
        for checkpoint in checkpoints:
            try:
                files = await self._read_snapshot(checkpoint)
            except DecodeError as e:
                logger.warning(
                    "checkpoint_integrity_failed",
                    checkpoint_id=checkpoint.id,
                    reason=e.reason
                )
                failed.append(checkpoint.id)
                continue

            if files is None:
                logger.warning("checkpoint_data_missing", checkpoint_id=checkpoint.id)
                failed.append(checkpoint.id)

        logger.info("checkpoint_integrity_verified", checked=len(checkpoints), failed=len(failed))
        return failed

    # Named-checkpoint helpers

    async def create_named_checkpoint(self, name: str, description: str = "") -> Checkpoint:
        """Create a checkpoint in a fresh ``session-<millis>`` session"""
        session_id = f"session-{int(time.time() * 1000)}"
        return await self.create_checkpoint(
            session_id,
            CreateCheckpointOptions(name=name, description=description)
        )

    async def find_checkpoint_by_name(self, name: str) -> Optional[CheckpointInfo]:
        """Newest checkpoint with the given name"""
        for info in await self.list_checkpoints():
            if info.name == name:
                return info
        return None

    async def restore_named_checkpoint(self, name: str) -> bool:
        """Roll back to the newest checkpoint with the given name

        Returns:
            False if no checkpoint has that name or the rollback fails
        """
        info = await self.find_checkpoint_by_name(name)
        if not info:
            return False
        try:
            await self.rollback(info.id)
        except CheckpointError as e:
            logger.warning(
                "named_checkpoint_restore_failed",
                name=name,
                checkpoint_id=info.id,
                reason=e.reason
            )
            return False
        except DecodeError as e:
            logger.error(
                "named_checkpoint_restore_failed",
                name=name,
                checkpoint_id=info.id,
                reason=e.reason
            )
            return False
        return True

    async def delete_checkpoint_by_name(self, name: str) -> bool:
        """Delete the newest checkpoint with the given name; False if none"""
        info = await self.find_checkpoint_by_name(name)
        if not info:
            return False
        return await self.delete_checkpoint(info.id)

    async def get_diff_since_checkpoint(self, name: str) -> Optional[ChangeSet]:
        """Diff a named checkpoint against the current working tree

        The current side covers the snapshot's paths plus whatever the file
        lister reports now.

        Returns:
            The change set, or None if no checkpoint has that name or its data is missing
        """
        info = await self.find_checkpoint_by_name(name)
        if not info:
            return None

        checkpoint = await self.get_checkpoint(info.id)
        if not checkpoint:
            return None

        old_files = await self._read_snapshot(checkpoint)
        if old_files is None:
            return None

        candidates = list(old_files)
        for path in await self.file_lister.list_files(self.working_directory):
            if path not in old_files:
                candidates.append(path)

        current_files = await self.working_tree.read_many(
            [path for path in candidates if self.working_tree.contains(path)]
        )

        change_set = compute_diff(old_files, current_files)
        change_set.checkpoint1 = info
        return change_set

    # Storage helpers

    def _encode_options(self) -> EncodeOptions:
        compression = CompressionKind(self.config.compression)
        return EncodeOptions(
            compress=compression is not CompressionKind.NONE,
            include_header=self.config.include_header,
            max_file_size=self.config.max_file_size,
            compression=compression,
            compression_level=self.config.compression_level
        )

    @staticmethod
    def _find_envelope(checkpoint_dir: Path) -> Optional[Path]:
        """The single envelope file in a checkpoint directory, if exactly one exists"""
        envelopes = [p for p in checkpoint_dir.glob(ENVELOPE_GLOB) if p.is_file()]
        if len(envelopes) != 1:
            return None
        return envelopes[0]

    async def _read_snapshot(self, checkpoint: Checkpoint) -> Optional[Dict[str, str]]:
        """Decoded files of a checkpoint, or None if its envelope is missing"""
        envelope_path = self._find_envelope(checkpoint.storage_path)
        if envelope_path is None:
            return None
        try:
            decoded = await self.serializer.decode_from_file(envelope_path, checkpoint.envelope_format)
        except StorageError:
            return None
        return decoded.files

    async def _save_metadata(self, checkpoint: Checkpoint) -> None:
        """Write metadata.json via a temp file and atomic rename"""
        metadata_path = checkpoint.storage_path / METADATA_FILENAME
        temp_path = checkpoint.storage_path / f"{METADATA_FILENAME}.tmp"

        async with aiofiles.open(temp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(checkpoint.to_dict(), indent=2))
        await aiofiles.os.replace(temp_path, metadata_path)

    async def _load_checkpoints(self) -> None:
        """Load all checkpoints from disk, skipping corrupt directories"""
        if not self.checkpoints_path.exists():
            return

        loaded: Dict[str, Checkpoint] = {}
        for checkpoint_dir in sorted(self.checkpoints_path.iterdir()):
            if not checkpoint_dir.is_dir():
                continue

            checkpoint = await self._load_checkpoint_dir(checkpoint_dir)
            if checkpoint:
                loaded[checkpoint.id] = checkpoint

        async with self._checkpoint_lock:
            self._checkpoints = loaded
            self._session_index = {}
            for checkpoint in sorted(loaded.values(), key=lambda cp: (cp.created_at, cp.id)):
                self._session_index.setdefault(checkpoint.session_id, []).append(checkpoint.id)

    async def _load_checkpoint_dir(self, checkpoint_dir: Path) -> Optional[Checkpoint]:
        metadata_path = checkpoint_dir / METADATA_FILENAME
        if not metadata_path.is_file():
            logger.warning("checkpoint_skipped", path=str(checkpoint_dir), reason="missing metadata")
            return None

        envelopes = [p for p in checkpoint_dir.glob(ENVELOPE_GLOB) if p.is_file()]
        if len(envelopes) != 1:
            logger.warning(
                "checkpoint_skipped",
                path=str(checkpoint_dir),
                reason=f"expected one envelope, found {len(envelopes)}"
            )
            return None

        try:
            async with aiofiles.open(metadata_path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
            checkpoint = Checkpoint.from_dict(data)
        except (OSError, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            logger.warning("checkpoint_skipped", path=str(checkpoint_dir), reason=str(e))
            return None

        if checkpoint.id != checkpoint_dir.name:
            logger.warning(
                "checkpoint_skipped",
                path=str(checkpoint_dir),
                reason=f"id {checkpoint.id} does not match directory"
            )
            return None

        # The directory may have moved since metadata was written
        checkpoint.storage_path = checkpoint_dir
        return checkpoint

    async def _emit(self, name: str, data: Dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.emit(
            name,
            EventCategory.CHECKPOINT,
            data,
            source="checkpoint_manager"
        )
