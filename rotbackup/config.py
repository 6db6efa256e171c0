"""Configuration management for rotbackup.

This module provides dataclasses for configuration and functions for
parsing/formatting TOML configuration files.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import tomllib

from rotbackup.retention import (
    DEFAULT_MAX_DAILY,
    DEFAULT_MAX_MAIN,
    DEFAULT_MAX_MONTHLY,
    DEFAULT_MAX_WEEKLY,
    RetentionPolicy,
)


class ConfigurationError(Exception):
    """Raised when configuration file is missing or malformed."""
    pass


class ValidationError(Exception):
    """Raised when configuration values have invalid types or values."""
    pass


@dataclass
class RemoteConfig:
    """Remote target settings. An empty host means a local target."""
    host: str = ""
    user: str = ""
    port: int = 22
    ssh_options: List[str] = field(default_factory=list)


@dataclass
class RetentionConfig:
    """Maximum number of backups kept per tier."""
    main: int = DEFAULT_MAX_MAIN
    daily: int = DEFAULT_MAX_DAILY
    weekly: int = DEFAULT_MAX_WEEKLY
    monthly: int = DEFAULT_MAX_MONTHLY

    def to_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            main=self.main,
            daily=self.daily,
            weekly=self.weekly,
            monthly=self.monthly,
        )


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"  # "DEBUG", "INFO", "WARNING", "ERROR"
    log_file: Optional[Path] = field(
        default_factory=lambda: Path.home() / ".local/log/rotbackup.log"
    )
    log_max_size_mb: int = 10  # Maximum log file size in MB before rotation
    log_backup_count: int = 5  # Number of rotated log files to keep

    @property
    def log_max_bytes(self) -> int:
        """Return max size in bytes for use with RotatingFileHandler."""
        return self.log_max_size_mb * 1024 * 1024


@dataclass
class ReportConfig:
    """SMTP settings for the report mail sent after each run."""
    recipients: List[str] = field(default_factory=list)
    sender: str = ""
    smtp_host: str = ""
    smtp_port: int = 0
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_insecure: bool = False

    @property
    def is_complete(self) -> bool:
        return bool(self.smtp_host) and self.smtp_port > 0


@dataclass
class Configuration:
    """Main configuration for rotbackup."""
    target: str
    sources: List[str]
    profile_name: str = ""
    rsync_options: List[str] = field(default_factory=list)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    @property
    def is_remote(self) -> bool:
        return bool(self.remote.host.strip())


# Default config file path
DEFAULT_CONFIG_PATH = Path.home() / ".config/rotbackup/config.toml"

# Required keys in configuration
REQUIRED_KEYS = ["target", "sources"]


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    """Validate that a value has the expected type."""
    # bool is a subclass of int, but true/false is never a valid count
    if expected_type is int and isinstance(value, bool):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected int, got bool"
        )
    if not isinstance(value, expected_type):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, "
            f"got {type(value).__name__}"
        )


def _validate_string_list(value: Any, key: str) -> List[str]:
    _validate_type(value, list, key)
    for i, item in enumerate(value):
        _validate_type(item, str, f"{key}[{i}]")
    return list(value)


def validate_sources(sources: List[str]) -> None:
    """
    Check that at least one source is given and all are absolute.

    Raises:
        ValidationError: If sources is empty or contains a relative path
    """
    if not sources:
        raise ValidationError("No sources specified")
    for source in sources:
        if not os.path.isabs(source):
            raise ValidationError(f"Source must be absolute: {source}")


def _parse_remote_config(data: Dict[str, Any]) -> RemoteConfig:
    """Parse remote target configuration from dict."""
    remote_data = data.get("remote", {})

    host = remote_data.get("host", "")
    _validate_type(host, str, "remote.host")

    user = remote_data.get("user", "")
    _validate_type(user, str, "remote.user")

    port = remote_data.get("port", 22)
    _validate_type(port, int, "remote.port")
    if not 0 < port < 65536:
        raise ValidationError(f"Key 'remote.port' out of range: {port}")

    ssh_options = _validate_string_list(
        remote_data.get("ssh_options", []), "remote.ssh_options"
    )

    return RemoteConfig(host=host, user=user, port=port, ssh_options=ssh_options)


def _parse_retention_config(data: Dict[str, Any]) -> RetentionConfig:
    """Parse retention configuration from dict."""
    retention_data = data.get("retention", {})
    values = {}

    for key, default in (
        ("main", DEFAULT_MAX_MAIN),
        ("daily", DEFAULT_MAX_DAILY),
        ("weekly", DEFAULT_MAX_WEEKLY),
        ("monthly", DEFAULT_MAX_MONTHLY),
    ):
        value = retention_data.get(key, default)
        _validate_type(value, int, f"retention.{key}")
        if value < 0:
            raise ValidationError(f"Key 'retention.{key}' must not be negative, got {value}")
        values[key] = value

    return RetentionConfig(**values)


def _parse_logging_config(data: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration from dict."""
    logging_data = data.get("logging", {})

    level = logging_data.get("level", "INFO")
    _validate_type(level, str, "logging.level")

    log_file = logging_data.get(
        "log_file",
        str(Path.home() / ".local/log/rotbackup.log")
    )
    _validate_type(log_file, str, "logging.log_file")

    log_max_size_mb = logging_data.get("log_max_size_mb", 10)
    _validate_type(log_max_size_mb, int, "logging.log_max_size_mb")

    log_backup_count = logging_data.get("log_backup_count", 5)
    _validate_type(log_backup_count, int, "logging.log_backup_count")

    return LoggingConfig(
        level=level,
        # An empty log_file disables file logging
        log_file=Path(log_file) if log_file else None,
        log_max_size_mb=log_max_size_mb,
        log_backup_count=log_backup_count,
    )


def _parse_report_config(data: Dict[str, Any]) -> ReportConfig:
    """Parse report mail configuration from dict."""
    report_data = data.get("report", {})

    recipients = _validate_string_list(
        report_data.get("recipients", []), "report.recipients"
    )

    values: Dict[str, Any] = {}
    for key in ("sender", "smtp_host", "smtp_username", "smtp_password"):
        value = report_data.get(key, "")
        _validate_type(value, str, f"report.{key}")
        values[key] = value

    smtp_port = report_data.get("smtp_port", 0)
    _validate_type(smtp_port, int, "report.smtp_port")

    smtp_insecure = report_data.get("smtp_insecure", False)
    _validate_type(smtp_insecure, bool, "report.smtp_insecure")

    return ReportConfig(
        recipients=recipients,
        smtp_port=smtp_port,
        smtp_insecure=smtp_insecure,
        **values,
    )


def parse_config_string(toml_content: str) -> Configuration:
    """
    Parse TOML string into Configuration object.

    Args:
        toml_content: TOML formatted string

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If required key is missing
        ValidationError: If value has wrong type
    """
    try:
        data = tomllib.loads(toml_content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML format: {e}")

    # Get main section (may be nested under [main] or at root)
    main_data = data.get("main", data)

    # Check required keys
    for key in REQUIRED_KEYS:
        if key not in main_data:
            raise ConfigurationError(f"Missing required configuration key: '{key}'")

    target = main_data["target"]
    _validate_type(target, str, "target")
    if not target.strip():
        raise ValidationError("Key 'target' must not be empty")

    sources = _validate_string_list(main_data["sources"], "sources")
    validate_sources(sources)

    profile_name = main_data.get("profile_name", "")
    _validate_type(profile_name, str, "profile_name")

    rsync_options = _validate_string_list(
        main_data.get("rsync_options", []), "rsync_options"
    )

    return Configuration(
        target=target,
        sources=sources,
        profile_name=profile_name,
        rsync_options=rsync_options,
        remote=_parse_remote_config(data),
        retention=_parse_retention_config(data),
        logging=_parse_logging_config(data),
        report=_parse_report_config(data),
    )


def parse_config(config_path: Optional[Path] = None) -> Configuration:
    """
    Parse TOML configuration file into Configuration object.

    Args:
        config_path: Path to config file. Defaults to ~/.config/rotbackup/config.toml

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If file doesn't exist or required key missing
        ValidationError: If value has wrong type
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}"
        )

    try:
        content = config_path.read_text()
    except PermissionError:
        raise ConfigurationError(
            f"Permission denied reading configuration file: {config_path}"
        )
    except OSError as e:
        raise ConfigurationError(
            f"Error reading configuration file {config_path}: {e}"
        )

    return parse_config_string(content)


def _escape_toml_string(s: str) -> str:
    """Escape a string for TOML basic string format."""
    # Must escape backslashes first, then quotes
    return s.replace("\\", "\\\\").replace('"', '\\"')


def _format_string_list(items: List[str]) -> str:
    return "[" + ", ".join(f'"{_escape_toml_string(i)}"' for i in items) + "]"


def _format_bool(value: bool) -> str:
    return "true" if value else "false"


def format_config(config: Configuration) -> str:
    """
    Format Configuration object back to TOML string.

    Args:
        config: Configuration object to format

    Returns:
        TOML formatted string
    """
    log_file = str(config.logging.log_file) if config.logging.log_file else ""

    lines = [
        "[main]",
        f'profile_name = "{_escape_toml_string(config.profile_name)}"',
        f'target = "{_escape_toml_string(config.target)}"',
        f"sources = {_format_string_list(config.sources)}",
        f"rsync_options = {_format_string_list(config.rsync_options)}",
        "",
        "[remote]",
        f'host = "{_escape_toml_string(config.remote.host)}"',
        f'user = "{_escape_toml_string(config.remote.user)}"',
        f"port = {config.remote.port}",
        f"ssh_options = {_format_string_list(config.remote.ssh_options)}",
        "",
        "[retention]",
        f"main = {config.retention.main}",
        f"daily = {config.retention.daily}",
        f"weekly = {config.retention.weekly}",
        f"monthly = {config.retention.monthly}",
        "",
        "[logging]",
        f'level = "{_escape_toml_string(config.logging.level)}"',
        f'log_file = "{_escape_toml_string(log_file)}"',
        f"log_max_size_mb = {config.logging.log_max_size_mb}",
        f"log_backup_count = {config.logging.log_backup_count}",
        "",
        "[report]",
        f"recipients = {_format_string_list(config.report.recipients)}",
        f'sender = "{_escape_toml_string(config.report.sender)}"',
        f'smtp_host = "{_escape_toml_string(config.report.smtp_host)}"',
        f"smtp_port = {config.report.smtp_port}",
        f'smtp_username = "{_escape_toml_string(config.report.smtp_username)}"',
        f'smtp_password = "{_escape_toml_string(config.report.smtp_password)}"',
        f"smtp_insecure = {_format_bool(config.report.smtp_insecure)}",
    ]
    return "\n".join(lines) + "\n"


def create_default_config() -> str:
    """
    Generate default configuration TOML for `rotbackup init`.

    Returns:
        TOML formatted string with default configuration
    """
    return f'''# rotbackup configuration file

[main]
# Name for this backup set, used in report mail subjects
profile_name = "default"

# Absolute target folder. Backups land here, older ones move to the
# _daily, _weekly and _monthly subfolders.
target = "/mnt/backup/default"

# Absolute source paths passed to rsync
sources = [
    "/home/user/Documents",
]

# Extra rsync options. -a, --delete and --link-dest are always used.
rsync_options = []

[remote]
# Leave host empty to back up to a local target
host = ""
user = ""
port = 22
# Extra ssh options, used for remote commands and rsync's -e
ssh_options = []

[retention]
# Maximum number of backups per tier. Overflow moves to the next tier;
# overflow of the monthly tier is deleted.
main = {DEFAULT_MAX_MAIN}
daily = {DEFAULT_MAX_DAILY}
weekly = {DEFAULT_MAX_WEEKLY}
monthly = {DEFAULT_MAX_MONTHLY}

[logging]
# Log level: DEBUG, INFO, WARNING, ERROR
level = "INFO"
log_file = "~/.local/log/rotbackup.log"
# Log rotation settings
log_max_size_mb = 10
log_backup_count = 5

[report]
# Report mail with the run's log, sent after every run
recipients = []
sender = ""
smtp_host = ""
smtp_port = 0
smtp_username = ""
smtp_password = ""
smtp_insecure = false
'''
