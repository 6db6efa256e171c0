"""Command-line interface for rotbackup.

This module provides the CLI for rotbackup, supporting commands for:
- run: Create a new backup and rotate existing ones
- rotate: Rotate existing backups without creating a new one
- list: List backups per tier
- init: Create default config
"""

import argparse
import json
import shlex
import sys
from pathlib import Path
from typing import Dict, List, Optional

from rotbackup import __version__
from rotbackup.backup import (
    EXIT_CONFIG_ERROR,
    EXIT_SUCCESS,
    BackupResult,
    exit_code_for,
    list_all_backups,
    run_backup,
    run_rotation,
)
from rotbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    DEFAULT_CONFIG_PATH,
    create_default_config,
    parse_config,
    validate_sources,
)
from rotbackup.errors import RotationError
from rotbackup.listing import BackupEntry
from rotbackup.naming import Tier


EXIT_GENERAL_ERROR = 1

# Retention override flags and the RetentionConfig field each one sets
RETENTION_FLAGS = {
    "max_main": "main",
    "max_daily": "daily",
    "max_weekly": "weekly",
    "max_monthly": "monthly",
}


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {number}")
    return number


def _port(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'")
    if not 0 < number < 65536:
        raise argparse.ArgumentTypeError(f"must be between 1 and 65535: {number}")
    return number


def _add_override_arguments(parser: argparse.ArgumentParser) -> None:
    """Flags that override values from the config file."""
    parser.add_argument(
        '--profile-name',
        help='Name of the backup set, used in the report mail subject'
    )
    parser.add_argument(
        '--source',
        action='append',
        help='Absolute source path. Specify multiple times for multiple values.',
        metavar='PATH'
    )
    parser.add_argument(
        '--target',
        help='Absolute target folder',
        metavar='PATH'
    )
    parser.add_argument(
        '--target-host',
        help='Remote host of the target. Leave empty for a local target.',
        metavar='HOST'
    )
    parser.add_argument(
        '--target-user',
        help='Login user for the remote host',
        metavar='USER'
    )
    parser.add_argument(
        '--target-port',
        type=_port,
        help='ssh port of the remote host',
        metavar='PORT'
    )
    parser.add_argument(
        '--rsync-options',
        help='Additional rsync options, as a single shell-quoted string',
        metavar='OPTIONS'
    )
    parser.add_argument(
        '--ssh-options',
        help='Additional ssh options, as a single shell-quoted string',
        metavar='OPTIONS'
    )
    for flag, tier in RETENTION_FLAGS.items():
        parser.add_argument(
            '--' + flag.replace('_', '-'),
            type=_non_negative_int,
            help=f'Maximum number of backups in the {tier} tier',
            metavar='N'
        )


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog='rotbackup',
        description='Rotating hard-link backups with rsync'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to config file (default: ~/.config/rotbackup/config.toml)',
        metavar='PATH'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Log at DEBUG level, including rsync and ssh output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser(
        'run',
        help='Create a new backup and rotate existing ones'
    )
    _add_override_arguments(run_parser)

    rotate_parser = subparsers.add_parser(
        'rotate',
        help='Rotate existing backups without creating a new one'
    )
    _add_override_arguments(rotate_parser)

    list_parser = subparsers.add_parser(
        'list',
        help='List backups per tier'
    )
    list_parser.add_argument(
        '--json',
        action='store_true',
        help='Output in JSON format'
    )

    init_parser = subparsers.add_parser(
        'init',
        help='Create default config file'
    )
    init_parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Overwrite existing config file'
    )

    return parser


def apply_overrides(config: Configuration, args: argparse.Namespace) -> Configuration:
    """
    Apply command line overrides to a loaded configuration.

    Raises:
        ValidationError: If the resulting sources are invalid
    """
    if getattr(args, 'profile_name', None) is not None:
        config.profile_name = args.profile_name
    if getattr(args, 'source', None):
        config.sources = list(args.source)
    if getattr(args, 'target', None):
        config.target = args.target
    if getattr(args, 'target_host', None) is not None:
        config.remote.host = args.target_host
    if getattr(args, 'target_user', None) is not None:
        config.remote.user = args.target_user
    if getattr(args, 'target_port', None) is not None:
        config.remote.port = args.target_port
    if getattr(args, 'rsync_options', None) is not None:
        config.rsync_options = shlex.split(args.rsync_options)
    if getattr(args, 'ssh_options', None) is not None:
        config.remote.ssh_options = shlex.split(args.ssh_options)

    for flag, tier in RETENTION_FLAGS.items():
        value = getattr(args, flag, None)
        if value is not None:
            setattr(config.retention, tier, value)

    validate_sources(config.sources)
    return config


def load_config(args: argparse.Namespace) -> Optional[Configuration]:
    """
    Load configuration from file and apply command line overrides.

    Without --config and with no default config file, --target and
    --source are enough to run.

    Returns None and prints error on failure.
    """
    config_path = args.config or DEFAULT_CONFIG_PATH
    flags_only = (
        args.config is None
        and not config_path.exists()
        and getattr(args, 'target', None)
        and getattr(args, 'source', None)
    )

    try:
        if flags_only:
            config = Configuration(target=args.target, sources=list(args.source))
        else:
            config = parse_config(config_path)
        return apply_overrides(config, args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return None


def _log_level(args: argparse.Namespace) -> Optional[str]:
    return "DEBUG" if args.debug else None


def _report_result(result: BackupResult, action: str) -> int:
    if result.success:
        if result.snapshot_result:
            print(f"Backup completed: {result.snapshot_result.snapshot_path}")
        if result.rotation_result:
            print(
                f"Rotation completed: moved {result.rotation_result.total_moved}, "
                f"deleted {result.rotation_result.total_deleted} backup(s)"
            )
        return EXIT_SUCCESS

    print(f"{action} failed: {result.error_message}", file=sys.stderr)
    return result.exit_code


def cmd_run(args: argparse.Namespace) -> int:
    """Execute the 'run' command - create a backup and rotate."""
    config = load_config(args)
    if config is None:
        return EXIT_CONFIG_ERROR

    result = run_backup(config=config, level=_log_level(args))
    return _report_result(result, "Backup")


def cmd_rotate(args: argparse.Namespace) -> int:
    """Execute the 'rotate' command - rotate without a new backup."""
    config = load_config(args)
    if config is None:
        return EXIT_CONFIG_ERROR

    result = run_rotation(config=config, level=_log_level(args))
    return _report_result(result, "Rotation")


def _entry_to_dict(entry: BackupEntry) -> Dict[str, str]:
    return {
        "name": entry.name,
        "path": entry.relative_path,
        "timestamp": entry.timestamp.isoformat(),
    }


def cmd_list(args: argparse.Namespace) -> int:
    """Execute the 'list' command - list backups per tier."""
    config = load_config(args)
    if config is None:
        return EXIT_CONFIG_ERROR

    try:
        backups = list_all_backups(config)
    except RotationError as e:
        print(f"Listing failed: {e}", file=sys.stderr)
        return exit_code_for(e)

    if args.json:
        output: Dict[str, List[Dict[str, str]]] = {
            tier.value: [_entry_to_dict(e) for e in backups[tier]]
            for tier in Tier
        }
        print(json.dumps(output, indent=2))
        return EXIT_SUCCESS

    total = sum(len(entries) for entries in backups.values())
    if total == 0:
        print("No backups found.")
        return EXIT_SUCCESS

    print(f"{'Tier':<10} {'Backup':<22} {'Path'}")
    print("-" * 60)
    for tier in Tier:
        for entry in reversed(backups[tier]):
            print(f"{tier.value:<10} {entry.name:<22} {entry.relative_path}")
    print("-" * 60)
    print(f"Total: {total} backup(s)")

    return EXIT_SUCCESS


def cmd_init(args: argparse.Namespace) -> int:
    """Execute the 'init' command - create default config."""
    config_path = args.config or DEFAULT_CONFIG_PATH

    if config_path.exists() and not args.force:
        print(f"Config file already exists: {config_path}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(create_default_config())

    print(f"Created default config: {config_path}")
    print("Edit this file to configure your backup settings.")

    return EXIT_SUCCESS


COMMANDS = {
    'run': cmd_run,
    'rotate': cmd_rotate,
    'list': cmd_list,
    'init': cmd_init,
}


def main(argv: list = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # If no command specified, show help
    if args.command is None:
        parser.print_help()
        return EXIT_SUCCESS

    handler = COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    try:
        return handler(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130  # Standard exit code for SIGINT


if __name__ == "__main__":
    sys.exit(main())
