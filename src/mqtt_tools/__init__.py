"""
mqtt-tools — minimal MQTT publish / subscribe command-line tools.

mqtt-pub publishes one message and exits; mqtt-sub subscribes to one topic
and prints every message until interrupted. Both are built on paho-mqtt.
"""

from importlib.metadata import PackageNotFoundError, version as _pkg_version


def get_version_string() -> str:
    try:
        return _pkg_version("mqtt-tools")
    except PackageNotFoundError:
        return "0.0.0+dev"
