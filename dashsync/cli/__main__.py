"""
dashsync CLI - keep the dashboard state in sync across devices.

Usage:
    dashsync sync status [--json]
    dashsync sync now [--json]
    dashsync sync pull [--json]
    dashsync sync push [--json]
    dashsync sync watch
"""

import argparse
import logging
import re
import sys

from dashsync.cli.commands.sync import cmd_sync
from dashsync.config import ConfigurationError, get_settings

logger = logging.getLogger(__name__)


def validate_input(value: str, field_name: str, max_length: int = 200) -> str:
    """Validate and sanitize CLI inputs."""
    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters)")
    # Remove null bytes and control characters
    return re.sub(r"[\x00-\x1f\x7f]", "", value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dashsync",
        description="Cross-device sync for the productivity dashboard",
    )
    parser.add_argument("--user", "-u", help="User ID (default: DASHSYNC_USER_ID)", default=None)
    parser.add_argument("--state", help="Local state file (default: ~/.dashsync/state.json)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_sync = subparsers.add_parser("sync", help="Sync local state with the remote record")
    sync_sub = p_sync.add_subparsers(dest="sync_action", required=True)

    # dashsync sync status
    sync_status = sync_sub.add_parser("status", help="Compare local state with the remote record")
    sync_status.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # dashsync sync now
    sync_now = sync_sub.add_parser("now", help="Two-way sync: pull remote changes, then push")
    sync_now.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # dashsync sync pull
    sync_pull = sync_sub.add_parser("pull", help="Apply the remote record to local state")
    sync_pull.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # dashsync sync push
    sync_push = sync_sub.add_parser("push", help="Replace the remote record with local state")
    sync_push.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # dashsync sync watch
    sync_sub.add_parser("watch", help="Keep syncing until interrupted")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=logging.DEBUG if args.verbose else settings.log_level.upper())

    try:
        if args.user:
            args.user = validate_input(args.user, "user")
        if args.command == "sync":
            code = cmd_sync(args, settings)
        else:
            code = 0
    except KeyboardInterrupt:
        code = 0
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
