"""Configuration and startup helpers for the live-reload server."""

import argparse
import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from liveserve.utils.command_runner import split_command

DEFAULT_PORT = 8080
DEFAULT_HOST = "0.0.0.0"
DEFAULT_LIVE_PATH = "_live"


def parse_boolean_env(env_var: str, default: str = "false", environ: Mapping[str, str] | None = None) -> bool:
    """
    Parse a boolean environment variable with consistent behavior.

    Args:
        env_var: Environment variable name
        default: Default value if env var is not set
        environ: Mapping to read instead of os.environ

    Returns:
        Boolean value
    """
    env = os.environ if environ is None else environ
    value = env.get(env_var, default).lower()
    return value in ("true", "1", "yes", "on")


def split_paths(value: str) -> list[str]:
    """Split a space separated path list, keeping quoted paths together."""
    return shlex.split(value)


@dataclass(frozen=True)
class ServerConfig:
    """Server configuration, read once at startup."""

    directory: Path
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    live: bool = False
    watch_paths: tuple[Path, ...] = ()
    live_path: str = DEFAULT_LIVE_PATH
    command: str | None = None
    verbose: bool = False
    log_level: str = "INFO"

    @property
    def live_url(self) -> str:
        return "/" + self.live_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liveserve",
        description="liveserve - tiny file server with live reload",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  liveserve -d public
  liveserve -d public -w "src 'my notes'" -c "make build"
  liveserve --live -l _reload

Environment:
  PORT        overrides -p
  HOST        default bind address
  LOG_LEVEL   log level when --verbose is not given (default: info)
""",
    )
    parser.add_argument("-d", "--dir", default=".", help='directory to serve, default is "."')
    parser.add_argument("-p", "--port", default=None, help=f"port, default is {DEFAULT_PORT}")
    parser.add_argument("--host", default=None, help=f"bind address, default is {DEFAULT_HOST}")
    parser.add_argument(
        "-w",
        "--watch",
        action="append",
        default=[],
        metavar="PATHS",
        help="watch files or folders for changes (space separated, quotes allowed); enables live reload",
    )
    parser.add_argument(
        "--live", action="store_true", help="enable live reload without watching, for externally triggered reloads"
    )
    parser.add_argument(
        "-l",
        "--live-path",
        default=DEFAULT_LIVE_PATH,
        metavar="ROUTE",
        help='URL path of live reload events, default is "_live"',
    )
    parser.add_argument("-c", "--command", default=None, help="command to run on change, before browsers reload")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose logging")
    return parser


def _parse_port(parser: argparse.ArgumentParser, raw_port: str) -> int:
    try:
        port = int(raw_port)
    except ValueError:
        parser.error(f"invalid port {raw_port!r}: must be an integer between 1 and 65535")

    if not (0 < port < 65536):
        parser.error(f"port {port} is out of range: must be between 1 and 65535")

    return port


def parse_args(
    argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None, cwd: Path | None = None
) -> ServerConfig:
    """
    Build the server configuration from command line options and environment.

    PORT in the environment takes precedence over -p. Usage errors exit
    with status 2, --help with status 0.

    Args:
        argv: Arguments without the program name, defaults to sys.argv[1:]
        environ: Environment mapping, defaults to os.environ
        cwd: Base for relative paths, defaults to the working directory

    Returns:
        Immutable ServerConfig
    """
    env = os.environ if environ is None else environ
    base = cwd or Path.cwd()
    parser = build_parser()
    args = parser.parse_args(argv)

    port = _parse_port(parser, env.get("PORT") or args.port or str(DEFAULT_PORT))

    watch_paths: list[Path] = []
    for value in args.watch:
        try:
            watch_paths.extend((base / p).resolve() for p in split_paths(value))
        except ValueError as e:
            parser.error(f"invalid watch paths {value!r}: {e}")

    live_path = args.live_path.strip("/")
    if not live_path:
        parser.error("live path must not be empty")

    command = args.command
    if command is not None:
        try:
            if not split_command(command):
                command = None
        except ValueError as e:
            parser.error(f"invalid command {command!r}: {e}")

    live = bool(watch_paths) or args.live or parse_boolean_env("LIVESERVE_LIVE", environ=env)
    log_level = "DEBUG" if args.verbose else env.get("LOG_LEVEL", "info").upper()

    return ServerConfig(
        directory=(base / args.dir).resolve(),
        port=port,
        host=args.host or env.get("HOST") or DEFAULT_HOST,
        live=live,
        watch_paths=tuple(watch_paths),
        live_path=live_path,
        command=command,
        verbose=args.verbose,
        log_level=log_level,
    )


def configure_logging(log_level: str) -> None:
    """Configure root logging; unknown level names fall back to INFO."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def print_startup_info(config: ServerConfig) -> None:
    """Print a short startup banner."""
    print("🚀 liveserve")
    print(f"📂 Serving: {config.directory}")
    print(f"🌐 URL: http://{config.host}:{config.port}/")

    if not config.directory.is_dir():
        print(f"⚠️  Directory does not exist: {config.directory}")

    if config.live:
        print(f"🔄 Live reload endpoint: {config.live_url}")
        for path in config.watch_paths:
            print(f"👀 Watching: {path}")
        if config.command:
            print(f"🛠️  On change: {config.command}")
    print()
