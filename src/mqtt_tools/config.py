"""
Invocation configuration for mqtt-pub / mqtt-sub.

Command-line flags are the primary source. Connection defaults can also come
from environment variables, optionally loaded from standard env files.

Priority (lowest -> highest):
1) built-in defaults (localhost:1883)
2) ~/.config/mqtt-tools/.env (user install)
3) ./.env (project override)
4) process environment variables
5) command-line flags (always win)
"""

from __future__ import annotations

import argparse
import enum
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 1883
KEEPALIVE_S = 60
QOS = 0
LOOP_INTERVAL_S = 1.0

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

ENV_PREFIX = "MQTT_TOOLS_"


class ConfigError(ValueError):
    """Raised when arguments or environment defaults are missing or invalid."""


class Command(enum.Enum):
    RUN = "run"
    SHOW_HELP = "show-help"


@dataclass(frozen=True, slots=True)
class InvocationConfig:
    topic: Optional[str] = None
    message: Optional[str] = None
    client_id: Optional[str] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    user: Optional[str] = None
    password: Optional[str] = None
    retain: bool = False
    command: Command = Command.RUN
    exit_status: int = EXIT_SUCCESS


class _ArgumentParser(argparse.ArgumentParser):
    # argparse would print its own usage and exit(2); the tools print their
    # fixed help text instead.
    def error(self, message: str):  # type: ignore[override]
        raise ConfigError(message)


def _env_paths() -> Iterable[Path]:
    # highest priority first; load_env_files never overrides a set variable
    yield Path(".env")

    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "mqtt-tools" / ".env"


def load_env_files() -> None:
    """
    Load env files into the process environment without overriding variables
    that are already set. ./.env is read before the user file, so it wins.
    """
    for p in _env_paths():
        if p.is_file():
            load_dotenv(p, override=False)


def _parse_port(raw: str, source: str) -> int:
    try:
        port = int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {source}: {raw!r}") from exc
    if not (1 <= port <= 65535):
        raise ConfigError(f"{source} out of range: {port}")
    return port


def _env_defaults(env: Mapping[str, str], args: argparse.Namespace) -> dict[str, object]:
    # only consulted for options the command line left unset
    defaults: dict[str, object] = {}
    for key in ("host", "user", "password", "client_id"):
        if getattr(args, key) is not None:
            continue
        value = env.get(ENV_PREFIX + key.upper())
        if value:
            defaults[key] = value
    raw_port = env.get(ENV_PREFIX + "PORT")
    if raw_port and args.port is None:
        defaults["port"] = _parse_port(raw_port, ENV_PREFIX + "PORT")
    return defaults


def build_parser(prog: str, *, with_message: bool) -> argparse.ArgumentParser:
    # -h is the broker host, so argparse's own -h/--help is disabled.
    p = _ArgumentParser(prog=prog, add_help=False, allow_abbrev=False)
    p.add_argument("-i", "--client-id", dest="client_id")
    p.add_argument("-h", "--host")
    p.add_argument("-p", "--port")
    p.add_argument("-u", "--user")
    p.add_argument("-P", "--password")
    p.add_argument("-r", "--retain", action="store_true")
    p.add_argument("-t", "--topic")
    if with_message:
        p.add_argument("-m", "--message")
    p.add_argument("-H", "--help", dest="show_help", action="store_true")
    return p


def parse_invocation(
    prog: str,
    argv: Optional[Sequence[str]] = None,
    *,
    with_message: bool,
    env: Optional[Mapping[str, str]] = None,
) -> InvocationConfig:
    """
    Turn the argument vector into an InvocationConfig.

    Never raises: on an unknown option, a bad value or a missing required
    field it logs one error line and returns a show-help config with a
    non-zero exit status.
    """
    try:
        return _parse(prog, argv, with_message=with_message, env=os.environ if env is None else env)
    except ConfigError as exc:
        logger.error("%s", exc)
        return InvocationConfig(command=Command.SHOW_HELP, exit_status=EXIT_FAILURE)


def _parse(
    prog: str,
    argv: Optional[Sequence[str]],
    *,
    with_message: bool,
    env: Mapping[str, str],
) -> InvocationConfig:
    args = build_parser(prog, with_message=with_message).parse_args(argv)

    if args.show_help:
        return InvocationConfig(command=Command.SHOW_HELP)

    values = _env_defaults(env, args)
    for key in ("host", "user", "password", "client_id"):
        if getattr(args, key) is not None:
            values[key] = getattr(args, key)
    if args.port is not None:
        values["port"] = _parse_port(args.port, "--port")

    message = getattr(args, "message", None)
    if not args.topic:
        raise ConfigError("missing topic")
    if with_message and not message:
        raise ConfigError("missing message")

    return InvocationConfig(
        topic=args.topic,
        message=message,
        retain=args.retain,
        **values,  # type: ignore[arg-type]
    )
