"""Shared pytest fixtures for test files."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from image_toolkit.common.aws_client_factory import CloudSession
from image_toolkit.common.condition_poller import ConditionPoller
from image_toolkit.common.credential_utils import GuestCredentials
from tests.poll_test_utils import FakeClock


class _StubBotoClient:
    """Minimal stub for boto3 clients used in tests."""

    def __init__(self, service_name: str, **kwargs):
        self.service_name = service_name
        self.region_name = kwargs.get("region_name")
        self.kwargs = kwargs
        self.exceptions = ClientError


@pytest.fixture(autouse=True)
def stub_boto3_client(monkeypatch):
    """Replace boto3.client with a stub so tests don't call real AWS."""

    def fake_client(service_name, **kwargs):
        return _StubBotoClient(service_name, **kwargs)

    monkeypatch.setattr("boto3.client", fake_client)


@pytest.fixture(name="fake_clock")
def fixture_fake_clock():
    """Provide a fresh fake clock."""
    return FakeClock()


@pytest.fixture(name="poller")
def fixture_poller(fake_clock):
    """ConditionPoller that sleeps on the fake clock."""
    return ConditionPoller(sleep=fake_clock.sleep, clock=fake_clock)


@pytest.fixture(name="session")
def fixture_session():
    """CloudSession backed by MagicMock clients."""
    return CloudSession(region="us-east-1", ec2=MagicMock(), workspaces=MagicMock())


@pytest.fixture(name="guest_credentials")
def fixture_guest_credentials():
    """Guest administrator credentials."""
    return GuestCredentials(username="builder", password="Secret'Pass1")
