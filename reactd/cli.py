"""
Action CLI - Run Configured Actions by Hand

Command-line tool for listing and executing configured actions outside
the condition loop. Useful when commissioning a new action.

Usage:
    # List configured actions
    reactd-action --config /etc/reactd/config.yaml list

    # Run an action
    reactd-action --config /etc/reactd/config.yaml run restart-nginx

    # Run a log or metrics action with the line to write
    reactd-action --config config.yaml run audit --text "disk full on /var"

Output is JSON for easy parsing.
"""

import argparse
import asyncio
import json
import os
import sys

from reactd.actions.dispatcher import ActionDispatcher, ActionResult
from reactd.common.config import ActionConfig, ReactdConfig, load_config_file
from reactd.common.exceptions import ConfigError
from reactd.common.logging_setup import set_log_level

DEFAULT_CONFIG_PATH = "/etc/reactd/config.yaml"


def describe_action(action: ActionConfig) -> dict:
    """Summary of one action for listing"""
    info = {"name": action.name, "type": action.type.value}
    if action.service:
        info["service"] = action.service
    if action.command:
        info["command"] = action.command.command
        info["user"] = action.command.user
        info["timeout_ms"] = action.timeout_ms
    if action.log:
        info["path"] = action.log.path
    if action.metrics:
        info["endpoint"] = f"{action.metrics.host}:{action.metrics.port}{action.metrics.http_path}"
    return info


async def run_action(config: ReactdConfig, name: str, text: str | None) -> ActionResult:
    """Execute one action and release its resources"""
    action = config.get_action(name)
    dispatcher = ActionDispatcher(config.settings)
    try:
        return await dispatcher.execute(action, text)
    finally:
        dispatcher.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="List and run configured reactd actions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("list", help="List configured actions")

    run_parser = subparsers.add_parser("run", help="Run an action")
    run_parser.add_argument("name", help="Action name")
    run_parser.add_argument("--text", help="Command or line to use instead of the configured one")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config_file(args.config)
        if "REACTD_LOG_LEVEL" not in os.environ:
            set_log_level(config.settings.log_level)

        if args.command == "list":
            print(json.dumps([describe_action(a) for a in config.actions.values()], indent=2))
            return 0

        result = asyncio.run(run_action(config, args.name, args.text))
    except ConfigError as e:
        print(json.dumps({"success": False, "error": e.message}))
        return 1

    print(json.dumps(result.to_dict()))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
