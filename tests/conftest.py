"""Shared pytest configuration: markers, ordering and a scripted gateway."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from typing import Any

import pytest
from pydantic import BaseModel

from patchline.gateway import AgentGateway, InvocationOptions, RawInvocation, RetryPolicy
from patchline.schemas import UsageInfo


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: filesystem/subprocess integration tests")
    config.addinivalue_line("markers", "slow: expensive tests that may call external APIs")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests second, slow tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("slow"):
            return (2, item.nodeid)
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


class ScriptedGateway(AgentGateway):
    """Gateway that replays canned payloads, keyed by result schema name.

    Each script entry is a dict (serialized as the final message), a raw
    string, an exception instance to raise, or a callable receiving
    ``(prompt, options)`` and returning one of those.
    """

    name = "scripted"

    def __init__(self, script: dict[str, list[Any]] | None = None) -> None:
        super().__init__(RetryPolicy(max_attempts=1, base_delay_seconds=0, max_delay_seconds=0))
        self.script = {key: list(items) for key, items in (script or {}).items()}
        self.calls: list[tuple[str, str, InvocationOptions]] = []
        self._lock = threading.Lock()
        self._local = threading.local()

    def invoke(self, prompt: str, options: InvocationOptions, result_schema: type[BaseModel]):
        self._local.schema = result_schema.__name__
        with self._lock:
            self.calls.append((result_schema.__name__, prompt, options))
        return super().invoke(prompt, options, result_schema)

    def stage_calls(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def _invoke_once(self, prompt: str, options: InvocationOptions) -> RawInvocation:
        key = self._local.schema
        with self._lock:
            queue = self.script.get(key) or []
            if not queue:
                raise AssertionError(f"Unexpected {key} invocation")
            item = queue.pop(0)
            call_number = sum(1 for name, _, _ in self.calls if name == key)
        if callable(item) and not isinstance(item, BaseException):
            item = item(prompt, options)
        if isinstance(item, BaseException):
            raise item
        message = item if isinstance(item, str) else json.dumps(item)
        return RawInvocation(
            final_message=message,
            session_id=f"sess-{key}-{call_number}",
            usage=UsageInfo(input_tokens=100, output_tokens=20, total_tokens=120, cost_usd=0.01),
            num_turns=3,
        )


@pytest.fixture
def make_gateway() -> Callable[..., ScriptedGateway]:
    def _make(**script: list[Any]) -> ScriptedGateway:
        return ScriptedGateway(script)

    return _make
