"""Shared fixtures: fake Loki executor, controllable clock and in-memory state."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import pytest

from loki_watch.config import (
    ConfigLocator,
    ConfigRepository,
    GlobalConfig,
    LokiConnection,
    ScheduleConfig,
    TriggerConfig,
)
from loki_watch.engine import LokiResponse, TriggerState


class FakeExecutor:
    """Replay canned responses and record every request."""

    def __init__(self, responses: Iterable[LokiResponse | Exception]) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict[str, str]]] = []

    def execute(self, method: str, path: str, params: Mapping[str, str]) -> LokiResponse:
        self.calls.append((method, path, dict(params)))
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        pass


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class MemoryStateStore:
    """Dict-backed state store counting loads and saves."""

    def __init__(self) -> None:
        self.states: dict[str, dict[str, Any]] = {}
        self.loads = 0
        self.saves = 0
        self.fail_save: Exception | None = None

    def load(self, key: str, ttl: timedelta) -> TriggerState:
        self.loads += 1
        return TriggerState.from_payload(self.states.get(key))

    def save(self, key: str, state: TriggerState, ttl: timedelta) -> None:
        self.saves += 1
        if self.fail_save is not None:
            raise self.fail_save
        self.states[key] = state.to_payload()


def loki_body(result_type: str = "streams", result: list | None = None, status: str = "success") -> str:
    return json.dumps({"status": status, "data": {"resultType": result_type, "result": result or []}})


def stream(labels: dict[str, str], *values: tuple[str, str]) -> dict[str, Any]:
    return {"stream": labels, "values": [list(value) for value in values]}


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("LOKI_WATCH_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def fake_executor() -> Callable[..., FakeExecutor]:
    def _builder(*bodies: str | Exception, status_code: int = 200) -> FakeExecutor:
        responses: list[LokiResponse | Exception] = []
        for body in bodies:
            if isinstance(body, Exception):
                responses.append(body)
            else:
                responses.append(LokiResponse(url="http://loki", status_code=status_code, text=body))
        return FakeExecutor(responses)

    return _builder


@pytest.fixture
def loki_payload() -> Callable[..., str]:
    return loki_body


@pytest.fixture
def make_stream() -> Callable[..., dict[str, Any]]:
    return stream


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(
        thread_pool_workers=2,
        state_dir=tmp_path / "state",
        outputs_dir=tmp_path / "outputs",
    )


@pytest.fixture
def sample_trigger_config() -> Callable[..., TriggerConfig]:
    def _builder(**overrides: Any) -> TriggerConfig:
        base: dict[str, Any] = {
            "trigger_id": "errors",
            "connection": LokiConnection(url="http://loki.example:3100/"),
            "query": '{app="api"} |= "error"',
            "schedule": ScheduleConfig(value=30),
            "since": "5m",
            "state_ttl": "1h",
        }
        base.update(overrides)
        return TriggerConfig(**base)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> Iterable[ConfigRepository]:
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository
