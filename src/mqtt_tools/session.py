"""
One MQTT connection, acquired and released in strict nested order.

    client handle -> credentials -> connection

Every step that succeeded is undone in reverse order when the session
closes, including when a later step fails while opening.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from mqtt_tools.config import KEEPALIVE_S, QOS, InvocationConfig

logger = logging.getLogger(__name__)

MessageCallback = Callable[[mqtt.MQTTMessage], None]


class SessionError(RuntimeError):
    """Raised when a session step fails; the message names the step."""


class MQTTSession:
    """
    Scoped paho client for a single publish or subscribe run.

    Use as a context manager; the connection is open inside the block:

        with MQTTSession(cfg) as session:
            session.publish(cfg.topic, b"hello", retain=False)
    """

    def __init__(
        self,
        cfg: InvocationConfig,
        *,
        on_message: Optional[MessageCallback] = None,
        keepalive: int = KEEPALIVE_S,
    ) -> None:
        self.cfg = cfg
        self.keepalive = keepalive
        self._on_message_cb = on_message
        self._client: Optional[mqtt.Client] = None
        self._stack: Optional[ExitStack] = None

    def __enter__(self) -> "MQTTSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def client(self) -> mqtt.Client:
        if self._client is None:
            raise SessionError("session is not open")
        return self._client

    def open(self) -> None:
        if self._stack is not None:
            raise SessionError("session is already open")
        stack = ExitStack()
        try:
            self._create_client(stack)
            self._set_credentials()
            self._connect(stack)
        except BaseException:
            stack.close()
            raise
        self._stack = stack

    def close(self) -> None:
        stack, self._stack = self._stack, None
        if stack is not None:
            stack.close()

    def _create_client(self, stack: ExitStack) -> None:
        try:
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.cfg.client_id or "",
                clean_session=True,
                protocol=mqtt.MQTTv311,
            )
        except ValueError as exc:
            raise SessionError(f"failed to create MQTT client: {exc}") from exc

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        if self._on_message_cb is not None:
            client.on_message = self._on_message

        self._client = client
        stack.callback(self._release_client)

    def _release_client(self) -> None:
        self._client = None
        logger.debug("MQTT client released")

    def _set_credentials(self) -> None:
        # username None leaves the connection unauthenticated
        try:
            self.client.username_pw_set(self.cfg.user, self.cfg.password)
        except (TypeError, ValueError) as exc:
            raise SessionError(f"failed to set user and password: {exc}") from exc

    def _connect(self, stack: ExitStack) -> None:
        logger.debug("Connecting to %s:%s", self.cfg.host, self.cfg.port)
        try:
            rc = self.client.connect(self.cfg.host, self.cfg.port, keepalive=self.keepalive)
        except (OSError, ValueError) as exc:
            raise SessionError(
                f"failed to connect to MQTT broker {self.cfg.host}:{self.cfg.port}: {exc}"
            ) from exc
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SessionError(
                f"failed to connect to MQTT broker {self.cfg.host}:{self.cfg.port}: "
                f"{mqtt.error_string(rc)}"
            )
        stack.callback(self._disconnect)

    def _disconnect(self) -> None:
        if self._client is None:
            return
        rc = self._client.disconnect()
        if rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            logger.debug("Disconnect returned %s", mqtt.error_string(rc))

    # -------------------------
    # Operations
    # -------------------------
    def publish(self, topic: str, payload: bytes, *, retain: bool = False) -> None:
        try:
            info = self.client.publish(topic, payload=payload, qos=QOS, retain=retain)
        except ValueError as exc:
            raise SessionError(f"failed to publish message: {exc}") from exc
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise SessionError(f"failed to publish message: {mqtt.error_string(info.rc)}")
        logger.debug("Published %d bytes to %s (retain=%s)", len(payload), topic, retain)

    def subscribe(self, topic: str) -> None:
        try:
            rc, _mid = self.client.subscribe(topic, qos=QOS)
        except ValueError as exc:
            raise SessionError(f"failed to subscribe: {exc}") from exc
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SessionError(f"failed to subscribe: {mqtt.error_string(rc)}")
        logger.debug("Subscribed: %s", topic)

    def unsubscribe(self, topic: str) -> bool:
        """Returns False instead of raising; callers treat this as a warning."""
        try:
            rc, _mid = self.client.unsubscribe(topic)
        except ValueError as exc:
            logger.debug("Unsubscribe rejected: %s", exc)
            return False
        return rc == mqtt.MQTT_ERR_SUCCESS

    def loop_once(self, timeout: float) -> int:
        """Service the network for up to ``timeout`` seconds; returns paho's rc."""
        return self.client.loop(timeout=timeout)

    # -------------------------
    # Callbacks
    # -------------------------
    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connect refused: %s", reason_code)
        else:
            logger.debug("Connected to MQTT broker %s:%s", self.cfg.host, self.cfg.port)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            logger.warning("Unexpected disconnect: %s", reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        if self._on_message_cb is not None:
            self._on_message_cb(msg)
