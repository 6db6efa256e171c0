"""Main backup orchestration for rotbackup.

This module provides the top-level functions that tie all components
together:
- Load configuration
- Set up logging and collect the run log
- Prepare the target folders
- Create a new backup hard-linked against the last one
- Rotate backups through the daily, weekly and monthly tiers
- Send the report mail

Every fatal condition is a RotationError. run_backup is the single place
where it is caught: the remaining steps are skipped, the error is logged at
CRITICAL level, the report mail is still sent, and the error kind is mapped
to an exit code.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
import logging
import time

from rotbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
)
from rotbackup.errors import ErrorKind, RotationError
from rotbackup.listing import (
    BackupEntry,
    determine_last_backup,
    list_backups,
    prepare_target,
    tier_path,
)
from rotbackup.location import (
    DirectoryOperations,
    LocalDirectoryOperations,
    RemoteDirectoryOperations,
)
from rotbackup.logger import LoggingError, RunLog, get_logger, setup_logging
from rotbackup.naming import Tier, format_name
from rotbackup.process import CommandRunner
from rotbackup.report import send_report
from rotbackup.rotation import RotationEngine, RotationResult
from rotbackup.snapshot import SnapshotEngine, SnapshotResult


# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_LISTING_ERROR = 2
EXIT_TRANSFER_ERROR = 3
EXIT_MATERIALIZATION_ERROR = 4
EXIT_INTERNAL_ERROR = 5

EXIT_CODES: Dict[ErrorKind, int] = {
    ErrorKind.CONFIG: EXIT_CONFIG_ERROR,
    ErrorKind.LISTING: EXIT_LISTING_ERROR,
    ErrorKind.TRANSFER: EXIT_TRANSFER_ERROR,
    ErrorKind.MATERIALIZATION: EXIT_MATERIALIZATION_ERROR,
    ErrorKind.PARSE: EXIT_INTERNAL_ERROR,
    ErrorKind.INTERNAL: EXIT_INTERNAL_ERROR,
}


def exit_code_for(error: RotationError) -> int:
    return EXIT_CODES.get(error.kind, EXIT_INTERNAL_ERROR)


@dataclass
class BackupResult:
    """Result of a backup or rotation run."""
    success: bool
    exit_code: int
    snapshot_result: Optional[SnapshotResult] = None
    rotation_result: Optional[RotationResult] = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    report_level: Optional[str] = None
    report_sent: bool = False
    duration_seconds: float = 0.0


def build_directory_operations(
    config: Configuration,
    runner: Optional[CommandRunner] = None,
    log: Optional[logging.Logger] = None,
) -> DirectoryOperations:
    """
    Create the directory operations for the configured target.

    Returns RemoteDirectoryOperations when a remote host is configured,
    LocalDirectoryOperations otherwise.
    """
    if config.is_remote:
        return RemoteDirectoryOperations(
            host=config.remote.host.strip(),
            user=config.remote.user,
            port=config.remote.port,
            ssh_options=config.remote.ssh_options,
            runner=runner,
            log=log,
        )
    return LocalDirectoryOperations(log=log)


def _load_config(
    config_path: Optional[Path],
    config: Optional[Configuration],
) -> Configuration:
    if config is not None:
        return config
    return parse_config(config_path)


def _start_logging(
    config: Configuration,
    level: Optional[str],
    console: bool,
) -> logging.Logger:
    try:
        return setup_logging(config.logging, level=level, console=console)
    except LoggingError as e:
        # Fall back to console-only logging with the default level
        logger = setup_logging(None, console=console)
        logger.warning(f"Failed to set up logging: {e}")
        return logger


def _run_level(logger: logging.Logger) -> int:
    """Lowest level any of the logger's handlers passes, for the run log."""
    levels = [h.level for h in logger.handlers if not isinstance(h, RunLog)]
    return min(levels) if levels else logging.INFO


def _finish(
    result: BackupResult,
    config: Configuration,
    run_log: RunLog,
    logger: logging.Logger,
    start_time: float,
    send_mail: bool,
) -> BackupResult:
    result.duration_seconds = time.time() - start_time
    logger.info(f"Finished after {result.duration_seconds:.2f} seconds")

    result.report_level = run_log.max_level_name()
    if send_mail:
        result.report_sent = send_report(
            config.report, config.profile_name, run_log, log=logger
        )
    run_log.close()
    return result


def _fail(result: BackupResult, error: RotationError, logger: logging.Logger) -> BackupResult:
    logger.critical(f"Aborting: {error}")
    result.success = False
    result.exit_code = exit_code_for(error)
    result.error_message = error.message
    result.error_kind = error.kind
    return result


def run_backup(
    config_path: Optional[Path] = None,
    config: Optional[Configuration] = None,
    level: Optional[str] = None,
    console: bool = True,
    send_mail: bool = True,
    runner: Optional[CommandRunner] = None,
    now: Optional[datetime] = None,
) -> BackupResult:
    """
    Run a complete backup operation.

    This function orchestrates the entire backup process:
    1. Load configuration (if not provided)
    2. Set up logging and start collecting the run log
    3. Build directory operations for the local or remote target
    4. Create the target and tier folders if missing
    5. Determine the backup name and the last backup to link against
    6. Create the new backup
    7. Rotate backups through the tiers
    8. Send the report mail
    9. Stop collecting the run log

    Args:
        config_path: Path to configuration file. If None, uses default path.
        config: Pre-loaded Configuration object. If provided, config_path is ignored.
        level: Log level overriding the configured one
        console: Whether to log to the console
        send_mail: Whether to send the report mail
        runner: Command runner for ssh and rsync, run_command unless overridden
        now: Time used for the backup name, the current time by default

    Returns:
        BackupResult with success status, exit code, and operation details
    """
    start_time = time.time()

    try:
        config = _load_config(config_path, config)
    except (ConfigurationError, ValidationError) as e:
        return BackupResult(
            success=False,
            exit_code=EXIT_CONFIG_ERROR,
            error_message=str(e),
            error_kind=ErrorKind.CONFIG,
        )

    logger = _start_logging(config, level, console)
    run_log = RunLog.start(logger, level=_run_level(logger))
    result = BackupResult(success=True, exit_code=EXIT_SUCCESS)

    ops = build_directory_operations(config, runner=runner, log=logger)
    target = Path(config.target)

    logger.info(f"Starting backup of profile '{config.profile_name}'")
    logger.info(f"Target: {ops.describe(target)}")

    try:
        prepare_target(ops, target, log=logger)

        name = format_name(now or datetime.now())
        last_backup = determine_last_backup(ops, target, log=logger)
        if last_backup:
            logger.info(f"Last backup: {last_backup.relative_path}")
        else:
            logger.info("No last backup found")

        engine = SnapshotEngine(
            target=target,
            sources=config.sources,
            ops=ops,
            target_host=config.remote.host.strip() if config.is_remote else None,
            rsync_options=config.rsync_options,
            ssh_arguments=ops.ssh_arguments() if config.is_remote else (),
            runner=runner,
            log=logger,
        )
        result.snapshot_result = engine.create_snapshot(name=name, link_dest=last_backup)

        rotation = RotationEngine(ops, target, config.retention.to_policy(), log=logger)
        result.rotation_result = rotation.rotate()
    except RotationError as e:
        _fail(result, e, logger)

    return _finish(result, config, run_log, logger, start_time, send_mail)


def run_rotation(
    config_path: Optional[Path] = None,
    config: Optional[Configuration] = None,
    level: Optional[str] = None,
    console: bool = True,
    send_mail: bool = True,
    runner: Optional[CommandRunner] = None,
) -> BackupResult:
    """
    Rotate existing backups without creating a new one.

    Same flow as run_backup, minus the transfer step.
    """
    start_time = time.time()

    try:
        config = _load_config(config_path, config)
    except (ConfigurationError, ValidationError) as e:
        return BackupResult(
            success=False,
            exit_code=EXIT_CONFIG_ERROR,
            error_message=str(e),
            error_kind=ErrorKind.CONFIG,
        )

    logger = _start_logging(config, level, console)
    run_log = RunLog.start(logger, level=_run_level(logger))
    result = BackupResult(success=True, exit_code=EXIT_SUCCESS)

    ops = build_directory_operations(config, runner=runner, log=logger)
    target = Path(config.target)

    try:
        prepare_target(ops, target, log=logger)
        rotation = RotationEngine(ops, target, config.retention.to_policy(), log=logger)
        result.rotation_result = rotation.rotate()
    except RotationError as e:
        _fail(result, e, logger)

    return _finish(result, config, run_log, logger, start_time, send_mail)


def list_all_backups(
    config: Configuration,
    runner: Optional[CommandRunner] = None,
    log: Optional[logging.Logger] = None,
) -> Dict[Tier, List[BackupEntry]]:
    """
    List the backups of every tier, oldest first.

    Tier folders that do not exist yet are reported as empty.

    Raises:
        RotationError: If a tier cannot be listed
    """
    log = log or get_logger()
    ops = build_directory_operations(config, runner=runner, log=log)
    target = Path(config.target)

    backups: Dict[Tier, List[BackupEntry]] = {}
    for tier in Tier:
        if not ops.is_directory(tier_path(target, tier)):
            backups[tier] = []
            continue
        backups[tier] = list_backups(ops, target, tier, base_path=target, log=log)
    return backups
