"""
mqtt-sub: subscribe to an MQTT topic and print every message until SIGINT/SIGTERM.

CLI:
  mqtt-sub [-h host] [-p port] [-u user] [-P password] [-i client-id] [-r] -t topic
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence, TextIO

import paho.mqtt.client as mqtt

from mqtt_tools import get_version_string
from mqtt_tools.config import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    LOOP_INTERVAL_S,
    Command,
    InvocationConfig,
    load_env_files,
    parse_invocation,
)
from mqtt_tools.log_config import configure_logging
from mqtt_tools.session import MQTTSession, SessionError

logger = logging.getLogger(__name__)

PROG = "mqtt-sub"

USAGE = """\
{prog} {version}
Subscribe to a MQTT topic

Usage:
    {prog} [-h host] [-p port] [-u user] [-P password]
             [-i client-id] [-r] -t topic

Options:
    -h, --host     : hostname of MQTT broker (default: localhost)
    -p, --port     : port of MQTT broker (default: 1883)
    -u, --user     : name of the MQTT user (default: <unset>)
    -P, --password : password of the MQTT user (default: <unset>)
    -i, --client-id: MQTT client id (default: <unset>)
    -r, --retain   : accepted for symmetry with mqtt-pub; has no effect
    -t, --topic    : MQTT topic to subscribe to (required)
    -H, --help     : print this help

Example:
    {prog} -t test
"""

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class Runtime:
    shutdown: threading.Event = field(default_factory=threading.Event)
    out: Optional[TextIO] = None


def print_usage() -> None:
    print(USAGE.format(prog=PROG, version=get_version_string()), end="")


def format_message(msg: mqtt.MQTTMessage) -> str:
    if msg.payload:
        payload = msg.payload.decode("utf-8", errors="replace")
    else:
        payload = "<empty>"
    return (
        f"message id: {msg.mid}\n"
        f"topic     : {msg.topic}\n"
        f"retained  : {'yes' if msg.retain else 'no'}\n"
        f"payload   : {payload}\n"
        "\n"
    )


@contextmanager
def shutdown_latch(event: threading.Event) -> Iterator[threading.Event]:
    """
    Route SIGINT/SIGTERM to ``event`` for the duration of the block, then
    restore whatever handlers were installed before.
    """

    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        event.set()

    previous = {sig: signal.signal(sig, _handler) for sig in SHUTDOWN_SIGNALS}
    try:
        yield event
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _service_loop(session: MQTTSession, shutdown: threading.Event) -> int:
    rc = mqtt.MQTT_ERR_SUCCESS
    while rc == mqtt.MQTT_ERR_SUCCESS and not shutdown.is_set():
        rc = session.loop_once(LOOP_INTERVAL_S)
    return rc


def run_subscribe(cfg: InvocationConfig, rt: Optional[Runtime] = None) -> int:
    """
    Connect, subscribe to cfg.topic and print messages until shutdown is
    requested or the network loop fails. Returns process exit code.
    """
    rt = rt or Runtime()
    out = rt.out if rt.out is not None else sys.stdout

    def _print_message(msg: mqtt.MQTTMessage) -> None:
        out.write(format_message(msg))
        out.flush()

    exit_code = EXIT_SUCCESS
    try:
        with MQTTSession(cfg, on_message=_print_message) as session, shutdown_latch(rt.shutdown):
            session.subscribe(cfg.topic)
            logger.debug("Waiting for messages on %s (shutdown via SIGINT/SIGTERM)", cfg.topic)

            rc = _service_loop(session, rt.shutdown)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error("failed to execute message loop: %s", mqtt.error_string(rc))
                exit_code = EXIT_FAILURE

            if not session.unsubscribe(cfg.topic):
                logger.warning("failed to unsubscribe from %s", cfg.topic)
    except SessionError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE

    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> None:
    load_env_files()
    configure_logging()

    cfg = parse_invocation(PROG, argv, with_message=False)
    if cfg.command is Command.SHOW_HELP:
        print_usage()
        raise SystemExit(cfg.exit_status)

    # signal handlers are only installed once connected; Ctrl-C before that
    # surfaces as KeyboardInterrupt
    try:
        code = run_subscribe(cfg)
    except KeyboardInterrupt:
        logger.error("interrupted while connecting to MQTT broker")
        code = EXIT_FAILURE
    raise SystemExit(code)


if __name__ == "__main__":
    main()
