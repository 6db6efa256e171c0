"""rotbackup - Rotating hard-link backups with rsync."""

__version__ = "0.1.0"

from rotbackup.errors import (
    ErrorKind,
    RotationError,
    ParseError,
    ListingError,
    MaterializationError,
    TransferError,
    InvariantViolation,
)
from rotbackup.naming import (
    Tier,
    Granularity,
    format_name,
    parse_name,
    is_backup_name,
)
from rotbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    format_config,
    create_default_config,
)
from rotbackup.location import (
    DirectoryOperations,
    LocalDirectoryOperations,
    RemoteDirectoryOperations,
)
from rotbackup.listing import (
    BackupEntry,
    list_backups,
    prepare_target,
    determine_last_backup,
)
from rotbackup.retention import (
    RetentionPolicy,
    RetentionDecision,
    excess,
    dedupe,
)
from rotbackup.rotation import RotationEngine, RotationResult
from rotbackup.snapshot import SnapshotEngine, SnapshotResult
from rotbackup.logger import (
    LoggingError,
    RunLog,
    setup_logging,
    get_logger,
)
from rotbackup.backup import (
    BackupResult,
    run_backup,
    run_rotation,
    EXIT_SUCCESS,
    EXIT_CONFIG_ERROR,
    EXIT_LISTING_ERROR,
    EXIT_TRANSFER_ERROR,
    EXIT_MATERIALIZATION_ERROR,
    EXIT_INTERNAL_ERROR,
)

__all__ = [
    "ErrorKind",
    "RotationError",
    "ParseError",
    "ListingError",
    "MaterializationError",
    "TransferError",
    "InvariantViolation",
    "Tier",
    "Granularity",
    "format_name",
    "parse_name",
    "is_backup_name",
    "Configuration",
    "ConfigurationError",
    "ValidationError",
    "parse_config",
    "format_config",
    "create_default_config",
    "DirectoryOperations",
    "LocalDirectoryOperations",
    "RemoteDirectoryOperations",
    "BackupEntry",
    "list_backups",
    "prepare_target",
    "determine_last_backup",
    "RetentionPolicy",
    "RetentionDecision",
    "excess",
    "dedupe",
    "RotationEngine",
    "RotationResult",
    "SnapshotEngine",
    "SnapshotResult",
    "LoggingError",
    "RunLog",
    "setup_logging",
    "get_logger",
    "BackupResult",
    "run_backup",
    "run_rotation",
    "EXIT_SUCCESS",
    "EXIT_CONFIG_ERROR",
    "EXIT_LISTING_ERROR",
    "EXIT_TRANSFER_ERROR",
    "EXIT_MATERIALIZATION_ERROR",
    "EXIT_INTERNAL_ERROR",
]
