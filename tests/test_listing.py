"""Unit tests for tier listing, target preparation and last backup lookup."""

import os
from datetime import datetime
from pathlib import Path

import pytest

from rotbackup.errors import ListingError, ParseError
from rotbackup.listing import (
    determine_last_backup,
    list_backups,
    prepare_target,
    tier_path,
)
from rotbackup.location import LocalDirectoryOperations
from rotbackup.naming import LATEST_POINTER_NAME, Tier


class TestListBackups:
    """Tests for list_backups."""

    def test_lists_only_backup_folders(self, target: Path, make_backups):
        """Pointer, staging, error and unrelated folders are ignored."""
        make_backups(Tier.MAIN, datetime(2024, 3, 10, 12), datetime(2024, 3, 9, 12))
        (target / "2024-03-11_12-00-00_progress").mkdir()
        (target / "2024-03-08_12-00-00_error").mkdir()
        (target / "lost+found").mkdir()
        (target / "2024-03-07_12-00-00").write_text("a file, not a folder")
        os.symlink("2024-03-10_12-00-00", target / LATEST_POINTER_NAME)

        entries = list_backups(LocalDirectoryOperations(), target, Tier.MAIN)

        assert [e.name for e in entries] == ["2024-03-09_12-00-00", "2024-03-10_12-00-00"]
        assert all(e.tier is Tier.MAIN for e in entries)
        assert entries[0].timestamp == datetime(2024, 3, 9, 12)

    def test_placeholder_pointer_is_ignored(self, target: Path, make_backups):
        (tier_path(target, Tier.DAILY) / LATEST_POINTER_NAME).mkdir()
        make_backups(Tier.DAILY, datetime(2024, 3, 10))
        entries = list_backups(LocalDirectoryOperations(), target, Tier.DAILY)
        assert [e.name for e in entries] == ["2024-03-10_00-00-00"]

    def test_relative_paths(self, target: Path, make_backups):
        """relative_path defaults to the tier folder and can be rebased."""
        make_backups(Tier.WEEKLY, datetime(2024, 3, 10))
        ops = LocalDirectoryOperations()

        in_tier = list_backups(ops, target, Tier.WEEKLY)
        from_root = list_backups(ops, target, Tier.WEEKLY, base_path=target)

        assert in_tier[0].relative_path == "2024-03-10_00-00-00"
        assert from_root[0].relative_path == "_weekly/2024-03-10_00-00-00"
        assert in_tier[0].path == target / "_weekly" / "2024-03-10_00-00-00"

    def test_unparsable_backup_name_raises(self, target: Path, make_backups):
        """2024-02-30 has the shape of a backup name but is no real date."""
        make_backups(Tier.MAIN, datetime(2024, 3, 1))
        (target / "2024-02-30_00-00-00").mkdir()

        with pytest.raises(ParseError):
            list_backups(LocalDirectoryOperations(), target, Tier.MAIN)

    def test_missing_folder_raises(self, tmp_path: Path):
        with pytest.raises(ListingError):
            list_backups(LocalDirectoryOperations(), tmp_path / "nope", Tier.MAIN)

    def test_empty_tier(self, target: Path):
        assert list_backups(LocalDirectoryOperations(), target, Tier.MONTHLY) == []


class TestPrepareTarget:
    """Tests for prepare_target."""

    def test_creates_all_tier_folders(self, tmp_path: Path):
        root = tmp_path / "new-target"
        prepare_target(LocalDirectoryOperations(), root)

        for tier in Tier:
            folder = tier_path(root, tier)
            assert folder.is_dir()
            assert (folder.stat().st_mode & 0o777) == 0o700

    def test_existing_folders_untouched(self, target: Path, make_backups):
        make_backups(Tier.DAILY, datetime(2024, 3, 10))
        prepare_target(LocalDirectoryOperations(), target)
        assert (target / "_daily" / "2024-03-10_00-00-00" / "marker.txt").exists()

    def test_file_in_place_of_folder(self, tmp_path: Path):
        root = tmp_path / "t"
        root.mkdir()
        (root / "_weekly").write_text("not a folder")
        with pytest.raises(ListingError):
            prepare_target(LocalDirectoryOperations(), root)


class TestDetermineLastBackup:
    """Tests for determine_last_backup."""

    def test_no_backups(self, target: Path):
        assert determine_last_backup(LocalDirectoryOperations(), target) is None

    def test_newest_across_tiers(self, target: Path, make_backups):
        """The newest backup can live in any tier."""
        make_backups(Tier.MAIN, datetime(2024, 3, 1))
        make_backups(Tier.DAILY, datetime(2024, 3, 5))
        make_backups(Tier.MONTHLY, datetime(2024, 1, 1))

        last = determine_last_backup(LocalDirectoryOperations(), target)

        assert last.name == "2024-03-05_00-00-00"
        assert last.tier is Tier.DAILY
        assert last.relative_path == "_daily/2024-03-05_00-00-00"

    def test_main_tier_relative_path(self, target: Path, make_backups):
        make_backups(Tier.MAIN, datetime(2024, 3, 1))
        last = determine_last_backup(LocalDirectoryOperations(), target)
        assert last.relative_path == "2024-03-01_00-00-00"
