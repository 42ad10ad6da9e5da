from __future__ import annotations

import os
from typing import Dict, List, Optional

import pytest

from mppt_agent import build_info
from mppt_agent.config import get_settings

build_info.BUILD_FLAVOR = os.environ.get("MPPT_TEST_BUILD_FLAVOR", "test")


class FakeClock:
    """Settable tick source for deterministic deadline tests."""

    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class RecordingTransport:
    """Retained channel double that records publishes and can drop the link."""

    def __init__(self, *, connected: bool = True, fail_after: Optional[int] = None) -> None:
        self.connected = connected
        self.fail_after = fail_after
        self.messages: List[tuple[str, str, Optional[bool]]] = []

    async def publish(self, topic: str, payload: str, *, retain: bool | None = None) -> bool:
        if not self.connected:
            return False
        if self.fail_after is not None and len(self.messages) >= self.fail_after:
            self.connected = False
            return False
        self.messages.append((topic, payload, retain))
        return True

    def topics(self) -> List[str]:
        return [topic for topic, _, _ in self.messages]

    def as_dict(self) -> Dict[str, str]:
        return {topic: payload for topic, payload, _ in self.messages}

    def clear(self) -> None:
        self.messages.clear()


class RecordingViewer:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: List[str] = []
        self.closed_with: Optional[int] = None
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code


@pytest.fixture(autouse=True)
def reset_settings_env(monkeypatch, tmp_path):
    config_path = tmp_path / "config.json"
    monkeypatch.setenv("MPPT_CONFIG_PATH", str(config_path))
    monkeypatch.setenv("MPPT_ADVERTISE_IP", "127.0.0.1")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
