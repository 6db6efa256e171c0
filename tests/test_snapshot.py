"""Unit tests for SnapshotEngine.

rsync is replaced by a fake runner that creates (or fails to create) the
staging folder it was asked to write into.
"""

import shlex
from datetime import datetime
from pathlib import Path

import pytest

from conftest import FakeRunner
from rotbackup.errors import ErrorKind, MaterializationError, TransferError
from rotbackup.listing import determine_last_backup
from rotbackup.location import LocalDirectoryOperations, RemoteDirectoryOperations
from rotbackup.naming import Tier
from rotbackup.process import CommandResult
from rotbackup.snapshot import RSYNC_PARTIAL_TRANSFER_CODES, SnapshotEngine


NAME = "2024-03-10_14-30-00"


def fake_rsync(returncode: int = 0, create_staging: bool = True, stderr=()):
    """Runner that plays rsync: writes into the last argument, then exits."""

    def handler(argv):
        if create_staging:
            staging = Path(argv[-1])
            staging.mkdir()
            (staging / "file.txt").write_text("copied")
        return CommandResult(returncode, [], list(stderr))

    return FakeRunner(handler)


def local_engine(target: Path, runner: FakeRunner, **kwargs) -> SnapshotEngine:
    return SnapshotEngine(
        target=target,
        sources=["/home/user/docs"],
        ops=LocalDirectoryOperations(),
        runner=runner,
        **kwargs,
    )


class TestBuildRsyncCommand:
    """Tests for rsync command line construction."""

    def test_first_backup(self, target: Path):
        engine = local_engine(target, FakeRunner())
        cmd = engine.build_rsync_command(target / f"{NAME}_progress")
        assert cmd == [
            "rsync", "-a", "--delete",
            "/home/user/docs",
            str(target / f"{NAME}_progress"),
        ]

    def test_link_dest_relative_to_staging(self, target: Path):
        engine = local_engine(target, FakeRunner(), rsync_options=["--exclude", ".cache"])
        cmd = engine.build_rsync_command(
            target / f"{NAME}_progress", "_daily/2024-03-09_10-00-00"
        )
        assert cmd[:5] == [
            "rsync", "-a", "--delete",
            "--link-dest", "../_daily/2024-03-09_10-00-00",
        ]
        assert cmd[5:7] == ["--exclude", ".cache"]

    def test_remote_target(self):
        ops = RemoteDirectoryOperations("host", user="bak", port=2200)
        engine = SnapshotEngine(
            target=Path("/backup"),
            sources=["/a", "/b"],
            ops=ops,
            target_host="host",
            ssh_arguments=ops.ssh_arguments(),
        )
        cmd = engine.build_rsync_command(Path(f"/backup/{NAME}_progress"))
        assert cmd == [
            "rsync", "-a", "--delete",
            "-e", "ssh -l bak -p 2200",
            "/a", "/b",
            f"host:/backup/{NAME}_progress",
        ]

    def test_ssh_option_with_spaces_stays_one_word(self):
        ops = RemoteDirectoryOperations(
            "host", ssh_options=["-o", "ProxyCommand ssh -W %h:%p jump"]
        )
        engine = SnapshotEngine(
            target=Path("/backup"),
            sources=["/a"],
            ops=ops,
            target_host="host",
            ssh_arguments=ops.ssh_arguments(),
        )
        cmd = engine.build_rsync_command(Path(f"/backup/{NAME}_progress"))
        shell = cmd[cmd.index("-e") + 1]
        assert shlex.split(shell) == ["ssh", "-o", "ProxyCommand ssh -W %h:%p jump"]


class TestCreateSnapshot:
    """Tests for SnapshotEngine.create_snapshot."""

    def test_success_commits_staging(self, target: Path):
        runner = fake_rsync()
        result = local_engine(target, runner).create_snapshot(name=NAME)

        assert result.success
        assert result.name == NAME
        assert result.snapshot_path == target / NAME
        assert (target / NAME / "file.txt").read_text() == "copied"
        assert not (target / f"{NAME}_progress").exists()
        assert runner.kwargs[0]["error_kind"] is ErrorKind.TRANSFER

    def test_links_against_last_backup(self, target: Path, make_backups):
        make_backups(Tier.DAILY, datetime(2024, 3, 9, 10))
        last = determine_last_backup(LocalDirectoryOperations(), target)
        runner = fake_rsync()

        result = local_engine(target, runner).create_snapshot(name=NAME, link_dest=last)

        assert result.link_dest == "_daily/2024-03-09_10-00-00"
        assert "../_daily/2024-03-09_10-00-00" in runner.calls[0]

    @pytest.mark.parametrize("code", sorted(RSYNC_PARTIAL_TRANSFER_CODES))
    def test_partial_transfer_is_warning(self, target: Path, code):
        result = local_engine(target, fake_rsync(returncode=code)).create_snapshot(name=NAME)

        assert result.success
        assert result.exit_code == code
        assert result.warning is not None
        assert (target / NAME).is_dir()

    def test_failure_renames_to_error(self, target: Path):
        runner = fake_rsync(returncode=12, stderr=["rsync error: protocol data stream"])

        with pytest.raises(TransferError) as exc_info:
            local_engine(target, runner).create_snapshot(name=NAME)

        assert exc_info.value.exit_code == 12
        assert "protocol data stream" in exc_info.value.message
        assert (target / f"{NAME}_error" / "file.txt").exists()
        assert not (target / f"{NAME}_progress").exists()
        assert not (target / NAME).exists()

    def test_failure_without_staging_folder(self, target: Path):
        """rsync failing before writing anything leaves nothing to rename."""
        runner = fake_rsync(returncode=255, create_staging=False)

        with pytest.raises(TransferError):
            local_engine(target, runner).create_snapshot(name=NAME)

        assert not (target / f"{NAME}_error").exists()

    def test_rsync_not_startable(self, target: Path):
        def handler(argv):
            raise TransferError("Could not start rsync: No such file or directory")

        with pytest.raises(TransferError):
            local_engine(target, FakeRunner(handler)).create_snapshot(name=NAME)

    def test_commit_failure_raises(self, target: Path):
        """A staging folder that cannot be renamed is a materialization error."""
        (target / NAME).mkdir()
        (target / NAME / "occupied").write_text("x")

        with pytest.raises(MaterializationError):
            local_engine(target, fake_rsync()).create_snapshot(name=NAME)

    def test_generated_name(self, target: Path):
        result = local_engine(target, fake_rsync()).create_snapshot()
        assert (target / result.name).is_dir()
        datetime.strptime(result.name, "%Y-%m-%d_%H-%M-%S")

    def test_remote_commit_uses_ssh(self, fake_runner: FakeRunner):
        ops = RemoteDirectoryOperations("host", runner=fake_runner)
        engine = SnapshotEngine(
            target=Path("/backup"),
            sources=["/a"],
            ops=ops,
            target_host="host",
            runner=fake_runner,
        )

        engine.create_snapshot(name=NAME)

        assert fake_runner.calls[0][0] == "rsync"
        assert fake_runner.calls[0][-1] == f"host:/backup/{NAME}_progress"
        assert fake_runner.remote_commands == [
            f"mv /backup/{NAME}_progress /backup/{NAME}"
        ]
