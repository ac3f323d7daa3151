from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import pytest

from plexdigest.cache import SnapshotStore
from plexdigest.config import ServerConfig
from plexdigest.digest import DigestEngine
from plexdigest.providers.plex import ConnectivityError
from plexdigest.types import ServerRecord


def session_record(transcode_key: str | None, user: str = "Alice", player: str = "Chromecast", title: str = "Movie A") -> ServerRecord:
    data: dict = {
        "title": title,
        "User": {"id": "1", "title": user},
        "Player": {"title": player, "state": "playing"},
    }
    if transcode_key is not None:
        data["TranscodeSession"] = {"key": transcode_key}
    return ServerRecord.from_element("Metadata", data)


def media_record(rating_key: int, title: str | None = None) -> ServerRecord:
    return ServerRecord.from_element(
        "Metadata",
        {"ratingKey": str(rating_key), "title": title or f"Item {rating_key}", "type": "movie"},
    )


class FakeClient:
    def __init__(self) -> None:
        self.sessions: List[ServerRecord] = []
        self.sections: Dict[str, List[ServerRecord]] = {}
        self.failing: set[str] = set()
        self.calls: List[str] = []

    def _maybe_fail(self, what: str) -> None:
        self.calls.append(what)
        if what in self.failing:
            raise ConnectivityError(f"{what} unreachable")

    def get_sessions(self) -> List[ServerRecord]:
        self._maybe_fail("sessions")
        return list(self.sessions)

    def get_sections(self) -> List[ServerRecord]:
        self._maybe_fail("sections")
        return [ServerRecord("Directory", {"key": k, "title": f"Section {k}"}) for k in self.sections]

    def get_recently_added(self, section_key: str | None = None) -> List[ServerRecord]:
        self._maybe_fail(f"section:{section_key}")
        return list(self.sections[section_key])

    def query(self, path: str) -> List[ServerRecord]:
        self._maybe_fail(path)
        return []


class FakeTicker:
    created: List["FakeTicker"] = []

    def __init__(self, interval_s: float, fn) -> None:
        self.interval_s = interval_s
        self.fn = fn
        self.started = False
        self.cancelled = False
        FakeTicker.created.append(self)

    def start(self) -> "FakeTicker":
        self.started = True
        return self

    def cancel(self) -> None:
        self.cancelled = True


class Recorder:
    def __init__(self, engine: DigestEngine) -> None:
        self.events: List[tuple] = []
        for name in ("start", "stop", "exit", "startDigest", "endDigest"):
            engine.on(name, lambda name=name: self.events.append((name,)))
        for name in ("newSession", "endSession", "newMedia"):
            engine.on(name, lambda payload, name=name: self.events.append((name, payload)))

    def names(self) -> List[str]:
        return [e[0] for e in self.events]

    def payloads(self, name: str) -> list:
        return [e[1] for e in self.events if e[0] == name]


@pytest.fixture(autouse=True)
def _reset_fake_tickers() -> None:
    FakeTicker.created.clear()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / "cache.json"


@pytest.fixture
def make_engine(client: FakeClient, cache_path: Path):
    def _make(start: bool = True, **kwargs) -> DigestEngine:
        kwargs.setdefault("store", SnapshotStore(cache_path))
        kwargs.setdefault("ticker_factory", FakeTicker)
        engine = DigestEngine(client_factory=lambda cfg: client, **kwargs)
        engine.configure(ServerConfig(token="secret", cache_path=cache_path))
        if start:
            engine.start()
        return engine

    return _make
