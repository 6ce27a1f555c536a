"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

# Ensure the repository's src/ is importable when tests run from a checkout
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from order_checklist.checklist.cache import TTLCache  # noqa: E402
from order_checklist.checklist.db import ChecklistDatabase  # noqa: E402
from order_checklist.config import Settings  # noqa: E402


START_EPOCH = 1_700_000_000.0  # 2023-11-14T22:13:20Z


class FakeClock:
    def __init__(self, start: float = START_EPOCH) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Records scheduled removals; nothing fires unless the test says so."""

    def __init__(self) -> None:
        self.timers: List[ManualTimer] = []

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay_seconds, callback)
        self.timers.append(timer)
        return timer

    def fire_all(self) -> None:
        for timer in list(self.timers):
            if not timer.cancelled:
                timer.callback()


class FakeModel:
    """Stands in for the hosted model at the service boundary."""

    def __init__(
        self,
        items: Optional[List[Dict[str, Any]]] = None,
        fragments: Optional[List[str]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.items = items if items is not None else []
        self.fragments = fragments if fragments is not None else []
        self.error = error
        self.extract_calls: List[Sequence[str]] = []
        self.chat_calls: List[Sequence[Dict[str, str]]] = []

    def extract_items(self, image_urls: Sequence[str], prompt: str) -> Any:
        self.extract_calls.append(list(image_urls))
        if self.error is not None:
            raise self.error
        return {"items": self.items}

    def stream_chat(self, messages: Sequence[Dict[str, str]]):
        self.chat_calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return iter(self.fragments)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def cache(clock: FakeClock, scheduler: ManualScheduler) -> TTLCache:
    return TTLCache(clock=clock, scheduler=scheduler)


@pytest.fixture
def db(tmp_path: Path, clock: FakeClock) -> ChecklistDatabase:
    return ChecklistDatabase(db_path=str(tmp_path / "var" / "checklist.sqlite3"), clock=clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key=None,
        openai_base_url=None,
        model_name="test-model",
        model_timeout=None,
        api_url="http://checklist.test",
        db_path=None,
    )
