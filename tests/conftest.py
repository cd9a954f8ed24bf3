"""
Pytest configuration and shared fixtures for vibe-checkpoint tests.
"""

import pytest
from pathlib import Path
from typing import Dict, Callable

# Add src to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vibe_checkpoint.checkpoint import CheckpointManager, StaticFileLister
from vibe_checkpoint.utils.config import CheckpointConfig
from vibe_checkpoint.utils.notifications import EventBus


def write_files(root: Path, files: Dict[str, str]) -> None:
    """Write text files under ``root`` exactly as given (no newline translation)."""
    for relative_path, content in files.items():
        path = root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)


def read_file(root: Path, relative_path: str) -> str:
    with open(root / relative_path, "r", encoding="utf-8", newline="") as f:
        return f.read()


@pytest.fixture
def workspace(tmp_path) -> Path:
    """Working tree root for a test."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def write_tree(workspace) -> Callable[[Dict[str, str]], None]:
    """Write files into the test working tree."""
    def _write(files: Dict[str, str]) -> None:
        write_files(workspace, files)
    return _write


@pytest.fixture
def file_lister() -> StaticFileLister:
    """File lister whose candidates tests set directly."""
    return StaticFileLister([], branch="main", revision="abc1234")


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def checkpoint_config() -> CheckpointConfig:
    return CheckpointConfig()


@pytest.fixture
async def checkpoint_manager(workspace, file_lister, event_bus, checkpoint_config):
    """Initialized checkpoint manager over the test working tree."""
    manager = CheckpointManager(
        workspace,
        config=checkpoint_config,
        file_lister=file_lister,
        event_bus=event_bus
    )
    await manager.initialize()
    return manager
