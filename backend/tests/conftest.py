"""
Shared fixtures: loopback responders and query clients
"""

import pytest

from ntpq.client import NtpClient
from ntpq.server import NtpResponder, ResponderConfig


@pytest.fixture
def responder_factory():
    """Start responders with a given ResponderConfig and stop them afterwards"""
    started = []

    def factory(**config):
        responder = NtpResponder(config=ResponderConfig(**config))
        responder.start()
        started.append(responder)
        return responder

    yield factory

    for responder in started:
        responder.stop()


@pytest.fixture
def responder(responder_factory):
    return responder_factory()


@pytest.fixture
def client():
    ntp = NtpClient()
    yield ntp
    ntp.close()
