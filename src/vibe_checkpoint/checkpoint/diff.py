"""Change sets between two decoded snapshots"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List, Mapping, TYPE_CHECKING

if TYPE_CHECKING:
    from .checkpoint import CheckpointInfo


class ChangeType(Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


@dataclass
class FileChange:
    """A single path's change between two snapshots"""
    file: str
    type: ChangeType
    old_content: Optional[str] = None
    new_content: Optional[str] = None
    line_count: Optional[int] = None

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "file": self.file,
            "type": self.type.value,
            "line_count": self.line_count
        }
        if include_content:
            data["old_content"] = self.old_content
            data["new_content"] = self.new_content
        return data


@dataclass
class ChangeSet:
    """Added, removed and modified paths between an older and a newer snapshot

    The three path lists are pairwise disjoint and ``total_changes`` is the
    sum of their lengths.
    """
    files_added: List[str] = field(default_factory=list)
    files_removed: List[str] = field(default_factory=list)
    files_modified: List[str] = field(default_factory=list)
    changes: List[FileChange] = field(default_factory=list)
    checkpoint1: Optional["CheckpointInfo"] = None
    checkpoint2: Optional["CheckpointInfo"] = None

    @property
    def total_changes(self) -> int:
        return len(self.files_added) + len(self.files_removed) + len(self.files_modified)

    @property
    def is_empty(self) -> bool:
        return self.total_changes == 0

    def summary(self) -> str:
        """One line per category, for display"""
        if self.is_empty:
            return "No changes"
        return (
            f"Files changed: {self.total_changes}\n"
            f"Added: {len(self.files_added)}\n"
            f"Removed: {len(self.files_removed)}\n"
            f"Modified: {len(self.files_modified)}"
        )

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        return {
            "checkpoint1": self.checkpoint1.to_dict() if self.checkpoint1 else None,
            "checkpoint2": self.checkpoint2.to_dict() if self.checkpoint2 else None,
            "files_added": list(self.files_added),
            "files_removed": list(self.files_removed),
            "files_modified": list(self.files_modified),
            "total_changes": self.total_changes,
            "changes": [c.to_dict(include_content) for c in self.changes]
        }


def count_lines(content: str) -> int:
    """Number of newline-separated segments (an empty string counts as one line)"""
    return len(content.split("\n"))


def compute_diff(old: Mapping[str, str], new: Mapping[str, str]) -> ChangeSet:
    """Compare two snapshots

    Added paths follow ``new``'s order; removed and modified paths follow
    ``old``'s order. Content equality is plain string equality.

    Args:
        old: Older snapshot, path -> content
        new: Newer snapshot, path -> content

    Returns:
        ChangeSet describing how to get from ``old`` to ``new``
    """
    result = ChangeSet()

    for path, content in new.items():
        if path not in old:
            result.files_added.append(path)
            result.changes.append(FileChange(
                file=path,
                type=ChangeType.ADDED,
                new_content=content
            ))

    for path, content in old.items():
        if path not in new:
            result.files_removed.append(path)
            result.changes.append(FileChange(
                file=path,
                type=ChangeType.REMOVED,
                old_content=content
            ))

    for path, old_content in old.items():
        if path not in new:
            continue
        new_content = new[path]
        if old_content != new_content:
            result.files_modified.append(path)
            result.changes.append(FileChange(
                file=path,
                type=ChangeType.MODIFIED,
                old_content=old_content,
                new_content=new_content,
                line_count=count_lines(new_content)
            ))

    return result
