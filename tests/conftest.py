"""
Pytest configuration and shared fixtures
"""
import os
import sys
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from mqtt_tools.config import InvocationConfig  # noqa: E402


@pytest.fixture(autouse=True)
def clean_env():
    """Keep MQTT_TOOLS_* variables (including ones loaded from .env files) out of tests"""
    def _clear():
        for key in [k for k in os.environ if k.startswith("MQTT_TOOLS_")]:
            os.environ.pop(key, None)

    _clear()
    yield
    _clear()


@pytest.fixture
def fake_paho_client(monkeypatch):
    """
    Patch paho.mqtt.client.Client to return a controllable fake.
    Every operation succeeds unless a test says otherwise.
    """
    fake = MagicMock()
    fake.connect.return_value = 0
    fake.publish.return_value = MagicMock(rc=0, mid=1)
    fake.subscribe.return_value = (0, 2)
    fake.unsubscribe.return_value = (0, 3)
    fake.loop.return_value = 0
    fake.disconnect.return_value = 0
    fake.ctor_calls = []

    def _ctor(*args, **kwargs):
        fake.ctor_calls.append((args, kwargs))
        return fake

    monkeypatch.setattr("paho.mqtt.client.Client", _ctor)
    return fake


@pytest.fixture
def pub_cfg():
    return InvocationConfig(topic="test", message="hello")


@pytest.fixture
def sub_cfg():
    return InvocationConfig(topic="test")
