"""Command-line entry point for checking and configuring outbound email."""

import argparse
import asyncio
import json
from typing import Any, Optional, Sequence

from dotenv import load_dotenv
from rich.console import Console

from campmail.core.email.services.send import EmailSendService
from campmail.utils.config_manager import ConfigManager
from campmail.utils.errors import CampMailError, format_error_message
from campmail.utils.logging import get_logger, init_logging

logger = get_logger(__name__)

# Keys whose values are never printed
SECRET_KEYS = {"smtp.password"}


## Argument Parser


def setup_argument_parser() -> argparse.ArgumentParser:
    """Build the campmail argument parser."""

    parser = argparse.ArgumentParser(
        prog="campmail",
        description="Outbound email delivery for the camp registration system",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: from config)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    test_parser = subparsers.add_parser(
        "test-email",
        help="Send the SMTP test email",
        description="Send a test message using the configured SMTP settings",
    )
    test_parser.add_argument("to", help="Recipient address")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_sub = config_parser.add_subparsers(
        dest="config_command",
        required=True,
        help="Configuration operation to perform",
    )
    config_sub.add_parser("list", help="List current settings")

    get_parser = config_sub.add_parser("get", help="Get a setting value")
    get_parser.add_argument("key", help="Config key to get, e.g. smtp.host")

    set_parser = config_sub.add_parser("set", help="Set a setting value")
    set_parser.add_argument("key", help="Config key to set, e.g. smtp.port")
    set_parser.add_argument("value", help="New value for the config key")

    return parser


## Commands


def _display_value(key: str, value: Any) -> str:
    if key in SECRET_KEYS:
        return "********" if value else ""
    return str(value)


async def run_test_email(config: ConfigManager, to: str, console: Console) -> int:
    """Send the SMTP test email and report the outcome."""

    service = EmailSendService.from_config(config.config)
    result = await service.send_test_email(to)

    if result.mocked:
        console.print(
            "[yellow]SMTP credentials are not configured; the message was only logged.[/]"
        )
        return 0

    if result.success:
        console.print(f"[green]Test email sent to {to}[/]")
        return 0

    console.print(f"[red]Test email failed: {result.error}[/]")
    return 1


def run_config(config: ConfigManager, args: argparse.Namespace, console: Console) -> int:
    """Execute a config subcommand."""

    if args.config_command == "list":
        data = config.config.model_dump()
        for section, values in data.items():
            if not isinstance(values, dict):
                console.print(f"{section} = {values}")
                continue
            for key, value in values.items():
                path = f"{section}.{key}"
                console.print(f"{path} = {_display_value(path, value)}")
        return 0

    if args.config_command == "get":
        value = config.get_config(args.key)
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        console.print(_display_value(args.key, value))
        return 0

    config.set_config(args.key, args.value)
    console.print(f"[green]{args.key} updated[/]")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code
    """
    console = Console()
    parser = setup_argument_parser()
    args = parser.parse_args(argv)

    try:
        load_dotenv()
        config = ConfigManager()
        init_logging(
            args.log_level or config.config.logging.log_level,
            log_to_file=config.config.logging.log_to_file,
        )

        if args.command == "test-email":
            return asyncio.run(run_test_email(config, args.to, console))

        return run_config(config, args, console)

    except CampMailError as e:
        logger.error(f"Command failed: {e.message}")
        console.print(f"[red]Error: {format_error_message(e)}[/]")
        return 1

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
