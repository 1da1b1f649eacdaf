"""
Pytest configuration and shared fixtures.
"""

from collections.abc import Generator

import pytest

from hedgehog_engine.config import EngineConfig, get_settings
from hedgehog_engine.runtime.clock import ManualClock
from hedgehog_engine.runtime.event_bus import EventBus, reset_event_bus
from tests.fixtures.fake_exchange import ETHUSDC, FakeExchange


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure no real credentials leak into tests from local .env."""
    for var in ["MEXC_API_KEY", "MEXC_SECRET_KEY", "MEXC_BASE_URL", "HEDGEHOG_MODE"]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset module-level singletons between tests."""
    yield
    reset_event_bus()
    get_settings.cache_clear()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def engine_config() -> EngineConfig:
    # 2 USDC first level keeps every scenario level above the 1 USDC minimum
    return EngineConfig(hedgehog={"base_size_pct": 0.02})


@pytest.fixture
def exchange(clock: ManualClock) -> FakeExchange:
    return FakeExchange(ETHUSDC, clock=clock)


@pytest.fixture
def instrument():
    return ETHUSDC
