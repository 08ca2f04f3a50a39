"""
mqtt-pub: publish one message to an MQTT topic.

CLI:
  mqtt-pub [-h host] [-p port] [-u user] [-P password] [-i client-id] [-r] -t topic -m message
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from mqtt_tools import get_version_string
from mqtt_tools.config import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    Command,
    InvocationConfig,
    load_env_files,
    parse_invocation,
)
from mqtt_tools.log_config import configure_logging
from mqtt_tools.session import MQTTSession, SessionError

logger = logging.getLogger(__name__)

PROG = "mqtt-pub"

USAGE = """\
{prog} {version}
Publish message to MQTT topic

Usage:
    {prog} [-h host] [-p port] [-u user] [-P password]
             [-i client-id] [-r]
             -t topic -m message

Options:
    -h, --host     : hostname of MQTT broker (default: localhost)
    -p, --port     : port of MQTT broker (default: 1883)
    -u, --user     : name of the MQTT user (default: <unset>)
    -P, --password : password of the MQTT user (default: <unset>)
    -i, --client-id: MQTT client id (default: <unset>)
    -r, --retain   : retain message (default: message is not retained)
    -t, --topic    : MQTT topic to publish to (required)
    -m, --message  : message to publish (required)
    -H, --help     : print this help

Example:
    {prog} -t test -m hello
"""


def print_usage() -> None:
    print(USAGE.format(prog=PROG, version=get_version_string()), end="")


def run_publish(cfg: InvocationConfig) -> int:
    """
    Connect, publish cfg.message once at QoS 0 and tear down.
    Returns process exit code.
    """
    payload = cfg.message.encode("utf-8")
    try:
        with MQTTSession(cfg) as session:
            session.publish(cfg.topic, payload, retain=cfg.retain)
    except SessionError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE

    return EXIT_SUCCESS


def main(argv: Optional[Sequence[str]] = None) -> None:
    load_env_files()
    configure_logging()

    cfg = parse_invocation(PROG, argv, with_message=True)
    if cfg.command is Command.SHOW_HELP:
        print_usage()
        raise SystemExit(cfg.exit_status)

    try:
        code = run_publish(cfg)
    except KeyboardInterrupt:
        logger.error("interrupted before the message was published")
        code = EXIT_FAILURE
    raise SystemExit(code)


if __name__ == "__main__":
    main()
