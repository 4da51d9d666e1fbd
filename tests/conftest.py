"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for gateway_fake imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from gateway_fake import FakeGateway  # noqa: E402
from serverctl.config import Config, PollPolicy  # noqa: E402
from serverctl.models import ResourceSpec  # noqa: E402


class RecordingSleep:
    """Sleep replacement that returns immediately and records each delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def config() -> Config:
    """Config with the production attempt budgets and a fake API key."""
    return Config(
        api_key="test-key",
        status_poll=PollPolicy(max_attempts=100, interval_seconds=5, early_error_grace=5),
        job_poll=PollPolicy(max_attempts=100, interval_seconds=5),
        drain_poll=PollPolicy(max_attempts=24, interval_seconds=5),
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


def make_spec(**overrides) -> ResourceSpec:
    """Valid server spec with usage billing and a password."""
    data = {
        "hostname": "web01.example.com",
        "plan": "VR1x1x25",
        "location": "LAX",
        "image": "Ubuntu 22.04 LTS (20G)",
        "password": "s3cret-pass",
        "package_billing_contract_id": "C-1001",
    }
    data.update(overrides)
    return ResourceSpec.model_validate({k: v for k, v in data.items() if v is not None})
