"""Shared test fixtures and configuration."""

import logging
from pathlib import Path
from typing import AsyncGenerator, Iterator

import pytest
import pytest_asyncio
import structlog

from app.bridge.orchestrator import CallBridge
from app.config import config
from app.main import setup_logging
from tests.fakes import FakeBrowserTransport, FakeCallsClient, FakeLegFactory


@pytest.fixture
def leg_factory() -> FakeLegFactory:
    """Peer leg factory producing scripted legs."""
    return FakeLegFactory()


@pytest.fixture
def calls_client() -> FakeCallsClient:
    """Calls client that accepts every action."""
    return FakeCallsClient()


@pytest.fixture
def browser() -> FakeBrowserTransport:
    """Connected browser transport."""
    return FakeBrowserTransport()


@pytest.fixture
def call_id() -> str:
    """Call id of the incoming call."""
    return "wacid.HBgLMTU1NTEyMzQ1NjcVAgARGBI"


@pytest_asyncio.fixture
async def bridge(
    calls_client: FakeCallsClient,
    leg_factory: FakeLegFactory
) -> AsyncGenerator[CallBridge, None]:
    """Call bridge with no settle delay and a short remote track bound."""
    call_bridge = CallBridge(
        calls_client=calls_client,
        leg_factory=leg_factory,
        remote_track_timeout=1.0,
        settle_delay=0.0
    )
    yield call_bridge
    await call_bridge.shutdown()


@pytest.fixture
def structured_logging(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """The application's own structlog configuration, at DEBUG, writing under tmp_path."""
    monkeypatch.setattr(config.system, "log_dir", str(tmp_path))
    monkeypatch.setattr(config.system, "log_level", "DEBUG")
    monkeypatch.setattr(config.system, "log_format", "json")

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level

    setup_logging()
    root.setLevel(logging.DEBUG)
    yield

    for handler in root.handlers:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    structlog.reset_defaults()
