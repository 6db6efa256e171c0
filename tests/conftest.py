"""Pytest configuration and fixtures for rotbackup tests."""

from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest
from hypothesis import settings, Phase

from rotbackup.listing import BackupEntry, tier_path
from rotbackup.naming import Tier, format_name
from rotbackup.process import CommandResult

# Configure hypothesis to use fewer examples for faster test runs
# Disable shrinking phase to speed up tests further
settings.register_profile(
    "fast",
    max_examples=25,
    deadline=10000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate]
)
settings.register_profile("ci", max_examples=200, deadline=10000)
settings.register_profile("dev", max_examples=25, deadline=10000)

# Use the fast profile by default
settings.load_profile("fast")


class FakeRunner:
    """
    Stands in for run_command: records every argv and answers from a
    handler function or a queue of canned results.
    """

    def __init__(self, handler: Optional[Callable[[List[str]], CommandResult]] = None):
        self.handler = handler
        self.calls: List[List[str]] = []
        self.kwargs: List[Dict] = []
        self.results: List[CommandResult] = []

    def queue(self, returncode: int = 0, stdout: Sequence[str] = (), stderr: Sequence[str] = ()):
        self.results.append(CommandResult(returncode, list(stdout), list(stderr)))

    def __call__(self, argv, **kwargs) -> CommandResult:
        self.calls.append(list(argv))
        self.kwargs.append(kwargs)
        if self.handler is not None:
            return self.handler(list(argv))
        if self.results:
            return self.results.pop(0)
        return CommandResult(0, [], [])

    @property
    def remote_commands(self) -> List[str]:
        """The shell command strings of all ssh calls."""
        return [argv[-1] for argv in self.calls if argv and argv[0] == "ssh"]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def target(tmp_path: Path) -> Path:
    """A target root with all tier folders in place."""
    root = tmp_path / "target"
    for tier in Tier:
        tier_path(root, tier).mkdir(parents=True, exist_ok=True)
    return root


@pytest.fixture
def make_backups(target: Path) -> Callable[..., List[Path]]:
    """Factory creating backup folders in a tier of the target."""

    def _make(tier: Tier, *instants: datetime) -> List[Path]:
        paths = []
        for instant in instants:
            path = tier_path(target, tier) / format_name(instant)
            path.mkdir(parents=True)
            (path / "marker.txt").write_text(format_name(instant))
            paths.append(path)
        return paths

    return _make


def backup_names(target: Path, tier: Tier) -> List[str]:
    """Sorted backup folder names present in a tier (pointer excluded)."""
    folder = tier_path(target, tier)
    return sorted(
        p.name for p in folder.iterdir()
        if p.is_dir() and not p.is_symlink() and p.name[0].isdigit()
    )


@pytest.fixture
def names_in():
    return backup_names


def make_entry(instant: datetime, tier: Tier = Tier.MAIN, target: Path = Path("/backup")) -> BackupEntry:
    """A BackupEntry for pure policy tests, no folder needed."""
    name = format_name(instant)
    path = tier_path(target, tier) / name
    return BackupEntry(
        tier=tier,
        name=name,
        path=path,
        relative_path=name,
        timestamp=instant.replace(microsecond=0),
    )


@pytest.fixture
def entry():
    return make_entry
