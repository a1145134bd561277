"""
Command-line entry point for the Storefront API Client.

Provides sign-in, sign-out, session status and one-off authenticated requests
against the storefront API, mainly for scripting and troubleshooting.
"""

import argparse
import asyncio
import getpass
import json
import logging
import sys
from typing import Optional

from shopclient.api_client import AuthenticatedClient
from shopclient.config import ClientConfiguration
from shopshared.exceptions import AuthenticationError, ConfigurationError, StorefrontClientError
from shopshared.logging_config import LogFormat, LogLevel, setup_logging
from shopshared.models import DefinitiveFailure, SendResult

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_REQUEST_FAILED = 1
EXIT_AUTH_FAILED = 2
EXIT_CONFIG_ERROR = 3
EXIT_INTERRUPTED = 130


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="storefront-client",
        description="Storefront API Client",
        epilog="""
Examples:
  %(prog)s login shopper@example.com          # Sign in (prompts for password)
  %(prog)s request GET /users/me              # Authenticated request
  %(prog)s request POST /cart/items --data '{"productId": 1, "quantity": 2}'
  %(prog)s status                             # Show session status
  %(prog)s logout                             # Sign out
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", help="Sign in and store the access credential")
    login_parser.add_argument("email", help="Account email")
    login_parser.add_argument("--password-stdin", action="store_true",
                              help="Read the password from standard input")

    subparsers.add_parser("logout", help="Sign out and clear the stored credential")
    subparsers.add_parser("status", help="Show whether a credential is stored")

    request_parser = subparsers.add_parser("request", help="Send an authenticated request")
    request_parser.add_argument("method", help="HTTP method (GET, POST, PUT, PATCH, DELETE)")
    request_parser.add_argument("path", help="API path relative to the base URL")
    request_parser.add_argument("--data", type=str, metavar="JSON", help="JSON request body")

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Configuration file path")
    config_group.add_argument("--base-url", type=str, metavar="URL",
                              help="Override API base URL")
    config_group.add_argument("--timeout", type=float, metavar="SECONDS",
                              help="Override request timeout")
    config_group.add_argument("--no-persist", action="store_true",
                              help="Keep the credential in memory only")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Print machine-readable JSON")
    output_group.add_argument("--verbose", "-v", action="store_true",
                              help="Enable verbose logging")

    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Write logs to file")

    return parser.parse_args(argv)


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging based on command line arguments and configuration."""
    if args.debug:
        level = LogLevel.DEBUG
    elif args.verbose:
        level = LogLevel.INFO
    elif args.json:
        level = LogLevel.ERROR
    else:
        level_name = config.get_log_level()
        level = LogLevel[level_name] if level_name in LogLevel.__members__ else LogLevel.WARNING

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(
        log_level=level,
        log_format=LogFormat.DETAILED if args.debug else log_format,
        log_file=args.log_file or config.get_log_file(),
        enable_audit=args.debug or args.verbose
    )


def load_configuration(args) -> ClientConfiguration:
    config = ClientConfiguration(args.config)
    if args.base_url:
        config.set_override('server.base_url', args.base_url)
    if args.timeout:
        config.set_override('server.timeout', args.timeout)
    return config


def print_result(result: SendResult, as_json: bool) -> int:
    """Print a send result and map it to an exit code."""
    if isinstance(result, DefinitiveFailure):
        error = result.error
        if as_json:
            print(json.dumps(error.to_dict(), indent=2, default=str))
        else:
            print(f"Error: {error.user_message}", file=sys.stderr)
        return EXIT_AUTH_FAILED if isinstance(error, AuthenticationError) else EXIT_REQUEST_FAILED

    response = result.response
    if as_json:
        print(json.dumps({'status': response.status, 'data': response.data}, indent=2, default=str))
    elif isinstance(response.payload, (dict, list)):
        print(json.dumps(response.payload, indent=2, ensure_ascii=False, default=str))
    elif response.payload is not None:
        print(response.payload)
    return EXIT_SUCCESS


def read_password(args) -> str:
    if args.password_stdin:
        return sys.stdin.readline().rstrip('\n')
    return getpass.getpass("Password: ")


async def run_command(args, client: AuthenticatedClient) -> int:
    """Run the selected subcommand against a configured client."""
    def on_session_ended(error):
        if not args.json:
            print(f"Session ended: {error.user_message}", file=sys.stderr)

    client.add_session_ended_callback(on_session_ended)

    if args.command == "status":
        authenticated = client.is_authenticated()
        if args.json:
            print(json.dumps({'base_url': client.base_url, 'authenticated': authenticated}))
        else:
            print(f"{client.base_url}: {'signed in' if authenticated else 'not signed in'}")
        return EXIT_SUCCESS

    if args.command == "login":
        result = await client.login(args.email, read_password(args))
        if not args.json and not isinstance(result, DefinitiveFailure):
            print(f"Signed in as {args.email}")
            return EXIT_SUCCESS
        return print_result(result, args.json)

    if args.command == "logout":
        result = await client.logout()
        if not args.json and not isinstance(result, DefinitiveFailure):
            print("Signed out")
            return EXIT_SUCCESS
        return print_result(result, args.json)

    body = None
    if args.data:
        try:
            body = json.loads(args.data)
        except json.JSONDecodeError as e:
            print(f"Error: --data is not valid JSON: {e}", file=sys.stderr)
            return EXIT_REQUEST_FAILED

    result = await client.request(args.method, args.path, body=body)
    return print_result(result, args.json)


async def run(args, config: ClientConfiguration) -> int:
    persist: Optional[bool] = False if args.no_persist else None
    async with AuthenticatedClient.from_config(config, persist=persist) as client:
        return await run_command(args, client)


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    args = parse_arguments(argv)

    try:
        config = load_configuration(args)
        configure_logging(args, config)
        return asyncio.run(run(args, config))

    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except StorefrontClientError as e:
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_REQUEST_FAILED


if __name__ == "__main__":
    sys.exit(main())
