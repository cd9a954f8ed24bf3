"""Working-tree collaborators: which files to snapshot, and reading/writing them"""

import asyncio
import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, List, Sequence

import aiofiles
import aiofiles.os

from ..utils.logging import get_logger

logger = get_logger(__name__)


class FileLister(ABC):
    """Supplies the candidate file list for a checkpoint"""

    @abstractmethod
    async def list_files(self, root: Path) -> List[str]:
        """Relative POSIX paths under ``root`` to include in a snapshot"""

    async def current_branch(self, root: Path) -> Optional[str]:
        """Name of the checked-out branch, if known"""
        return None

    async def current_revision(self, root: Path) -> Optional[str]:
        """Short identifier of the checked-out revision, if known"""
        return None


class StaticFileLister(FileLister):
    """Fixed file list, for callers that already know what to snapshot"""

    def __init__(
        self,
        files: Sequence[str],
        branch: Optional[str] = None,
        revision: Optional[str] = None
    ):
        self.files = list(files)
        self.branch = branch
        self.revision = revision

    async def list_files(self, root: Path) -> List[str]:
        return list(self.files)

    async def current_branch(self, root: Path) -> Optional[str]:
        return self.branch

    async def current_revision(self, root: Path) -> Optional[str]:
        return self.revision


class GitFileLister(FileLister):
    """Lists files via the git CLI

    Modified tracked files by default; all tracked files when the
    modification query fails or ``modified_only`` is off. Anything outside
    a git work tree (or without git installed) yields no files.
    """

    def __init__(self, git_binary: str = "git", modified_only: bool = True):
        self.git_binary = git_binary
        self.modified_only = modified_only

    async def list_files(self, root: Path) -> List[str]:
        if await self._run(root, "rev-parse", "--is-inside-work-tree") is None:
            logger.debug("git_work_tree_unavailable", root=str(root))
            return []

        output = None
        if self.modified_only:
            output = await self._run(root, "ls-files", "-m", "-z")
        if output is None:
            output = await self._run(root, "ls-files", "-z")
        if output is None:
            return []

        # -m lists a path once per unmerged stage; keep first occurrence
        return list(dict.fromkeys(p for p in output.split("\0") if p))

    async def current_branch(self, root: Path) -> Optional[str]:
        output = await self._run(root, "rev-parse", "--abbrev-ref", "HEAD")
        return output.strip() if output else None

    async def current_revision(self, root: Path) -> Optional[str]:
        output = await self._run(root, "rev-parse", "--short=7", "HEAD")
        return output.strip() if output else None

    async def _run(self, root: Path, *args: str) -> Optional[str]:
        """Run git in ``root``; None when git is missing or exits non-zero"""
        try:
            process = await asyncio.create_subprocess_exec(
                self.git_binary, *args,
                cwd=str(root),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
            stdout, stderr = await process.communicate()
        except (FileNotFoundError, NotADirectoryError, PermissionError) as e:
            logger.debug("git_unavailable", error=str(e))
            return None

        if process.returncode != 0:
            logger.debug(
                "git_command_failed",
                args=list(args),
                returncode=process.returncode,
                stderr=stderr.decode(errors="replace").strip()
            )
            return None

        return stdout.decode("utf-8", errors="surrogateescape")


class WorkingTree:
    """UTF-8 text file access relative to a root directory

    Files are read and written with newline translation disabled so content
    round-trips byte for byte.
    """

    def __init__(self, root: Path):
        self.root = Path(root).absolute()

    def resolve(self, relative_path: str) -> Path:
        """Absolute path for ``relative_path`` under the root"""
        return Path(os.path.normpath(self.root / relative_path))

    def contains(self, relative_path: str) -> bool:
        """Whether ``relative_path`` stays inside the root

        Symlinks are followed, so a linked directory pointing elsewhere does
        not count as inside.
        """
        root = self.root.resolve()
        target = (self.root / relative_path).resolve()
        return target != root and root in target.parents

    async def exists(self, relative_path: str) -> bool:
        return await aiofiles.os.path.exists(self.resolve(relative_path))

    async def read_text(self, relative_path: str) -> Optional[str]:
        """Read a file; None if it vanished, is not a regular file or is not UTF-8 text"""
        path = self.resolve(relative_path)
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8', newline='') as f:
                return await f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            logger.debug("working_tree_file_missing", path=relative_path)
        except UnicodeDecodeError:
            logger.debug("working_tree_file_not_text", path=relative_path)
        except PermissionError:
            logger.warning("working_tree_file_unreadable", path=relative_path)
        return None

    async def read_many(self, relative_paths: Sequence[str]) -> dict:
        """Read files one at a time in order, skipping unreadable ones"""
        contents = {}
        for relative_path in relative_paths:
            content = await self.read_text(relative_path)
            if content is not None:
                contents[relative_path] = content
        return contents

    async def write_text(self, relative_path: str, content: str) -> bool:
        """Write a file, creating parent directories

        Returns:
            True if the file existed before the write
        """
        path = self.resolve(relative_path)
        existed = await aiofiles.os.path.exists(path)

        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, 'w', encoding='utf-8', newline='') as f:
            await f.write(content)

        return existed
