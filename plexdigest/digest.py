from __future__ import annotations

import contextlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Tuple

from plexdigest.cache import CacheNotFoundError, CacheParseError, PersistenceError, SnapshotStore
from plexdigest.config import ConfigError, ServerConfig, validate_refresh
from plexdigest.diff import DiffResult, diff, media_key, session_key
from plexdigest.events import EventDispatcher, Listener
from plexdigest.providers.plex import PlexClient, PlexError
from plexdigest.types import ServerRecord, Session, Snapshot

logger = logging.getLogger(__name__)


class DigestError(RuntimeError):
    """Raised when one or more fetches of a digest failed; the snapshot is left untouched."""

    def __init__(self, failures: List[Tuple[str, Exception]]) -> None:
        self.failures = failures
        detail = "; ".join(f"{what}: {err}" for what, err in failures)
        super().__init__(f"{len(failures)} fetch(es) failed: {detail}")


class Ticker:
    """
    Runs ``fn`` on a background thread, once immediately and then every
    ``interval_s`` seconds after the previous run finished, until cancelled.
    """

    def __init__(self, interval_s: float, fn: Callable[[], Any], *, immediate: bool = True, name: str = "digest-ticker") -> None:
        self.interval_s = interval_s
        self._fn = fn
        self._immediate = immediate
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> "Ticker":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        if self._immediate and not self._stop.is_set():
            self._tick()
        while not self._stop.wait(self.interval_s):
            self._tick()

    def _tick(self) -> None:
        try:
            self._fn()
        except Exception:
            logger.exception("Scheduled run failed")


def _default_client(config: ServerConfig) -> PlexClient:
    return PlexClient(config.base_url, config.token, timeout=config.timeout)


class DigestEngine:
    """
    Periodically fetches sessions and recently-added media from a Plex server,
    diffs them against the cached snapshot and emits lifecycle events:

      start, stop, exit, startDigest, endDigest,
      newSession(Session), endSession(Session), newMedia(ServerRecord)

    At most one digest runs at a time. The first digest after configure() is
    a bootstrap digest (no change events) unless a persisted snapshot was
    loaded to diff against.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        *,
        store: Optional[SnapshotStore] = None,
        dispatcher: Optional[EventDispatcher] = None,
        client_factory: Callable[[ServerConfig], Any] = _default_client,
        ticker_factory: Callable[[float, Callable[[], Any]], Any] = Ticker,
        max_workers: int = 4,
    ) -> None:
        self.dispatcher = dispatcher or EventDispatcher(isolate_listeners=True)
        self.store = store
        self._own_store = store is None
        self.client_factory = client_factory
        self.ticker_factory = ticker_factory
        self.max_workers = max_workers

        self.config: Optional[ServerConfig] = None
        self.client: Any = None
        self.refresh_minutes: float = 0
        self.snapshot = Snapshot()
        self.bootstrap = True
        self.running = False

        self._ticker: Any = None
        self._state_lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._cycle_owner: Optional[int] = None
        self._generation = 0

        if config is not None:
            self.configure(config)

    # --- listeners ---

    def on(self, event: str, callback: Listener) -> "DigestEngine":
        self.dispatcher.on(event, callback)
        return self

    def off(self, event: str, callback: Listener) -> "DigestEngine":
        self.dispatcher.off(event, callback)
        return self

    def remove_all_listeners(self, event: Optional[str] = None) -> "DigestEngine":
        self.dispatcher.remove_all_listeners(event)
        return self

    # --- configuration and lifecycle ---

    def set_log_level(self, level: int | str = "INFO") -> "DigestEngine":
        logging.getLogger("plexdigest").setLevel(level.upper() if isinstance(level, str) else level)
        return self

    def configure(self, config: ServerConfig) -> "DigestEngine":
        if not config.token:
            raise ConfigError("You must provide an authorization token to connect to the Plex server.")
        minutes = validate_refresh(config.refresh_duration)

        with self._state_lock:
            self._cancel_ticker()
        # Never swap client or snapshot under a digest that is still running
        with self._cycle_idle(), self._state_lock:
            self._generation += 1
            self.config = config
            self.refresh_minutes = minutes
            logger.info("Instantiating Plex API object to %s...", config.base_url)
            self.client = self.client_factory(config)
            if self._own_store:
                self.store = SnapshotStore(config.cache_path)
            self.snapshot, loaded = self._load_snapshot()
            self.bootstrap = not loaded
        with self._state_lock:
            if self.running:
                self._cancel_ticker()
                self._arm()
        return self

    def set_interval(self, minutes: float) -> "DigestEngine":
        minutes = validate_refresh(minutes)
        with self._state_lock:
            self._cancel_ticker()
            self.refresh_minutes = minutes
            if self.running:
                self._arm()
        return self

    def start(self) -> "DigestEngine":
        with self._state_lock:
            if self.running:
                return self
            if self.client is None:
                raise ConfigError("The engine must be configured before it is started.")
            self.running = True
        logger.info("Starting bot")
        self.dispatcher.emit("start")
        with self._state_lock:
            if self.running:
                self._cancel_ticker()
                self._arm()
        return self

    def stop(self) -> "DigestEngine":
        with self._state_lock:
            if not self.running:
                return self
            self.running = False
            self._cancel_ticker()
        logger.info("Stopping bot")
        self.dispatcher.emit("stop")
        return self

    def shutdown(self) -> None:
        self.stop()
        logger.info("Shutting down")
        self.dispatcher.emit("exit")
        self.dispatcher.remove_all_listeners()

    def check_connection(self) -> bool:
        if self.client is None:
            raise ConfigError("The engine must be configured before connecting.")
        logger.info("Testing the connection to the Plex server...")
        self.client.query("/library")
        return True

    def _arm(self) -> None:
        self._ticker = self.ticker_factory(self.refresh_minutes * 60.0, self._scheduled_cycle)
        self._ticker.start()

    def _cancel_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _cycle_idle(self):
        # A listener running inside the digest may reconfigure; it already owns the cycle
        if self._cycle_owner == threading.get_ident():
            return contextlib.nullcontext()
        return self._cycle_lock

    def _load_snapshot(self) -> Tuple[Snapshot, bool]:
        try:
            snapshot = self.store.load()
        except CacheNotFoundError:
            logger.warning("Cache file not found. Starting with empty cache.")
            return Snapshot(), False
        except CacheParseError as e:
            logger.warning("Error parsing cache file (%s). Starting with empty cache instead.", e)
            return Snapshot(), False
        logger.info("Read cache successfully from file.")
        return snapshot, True

    # --- the digest ---

    def _scheduled_cycle(self) -> None:
        try:
            self.run_cycle()
        except DigestError as e:
            logger.error("Digest failed, will retry on the next run: %s", e)

    def run_cycle(self, force: bool = False) -> bool:
        """
        Runs one fetch-diff-emit-persist digest. Returns False when skipped
        (not running, or another digest is still in flight). ``force`` runs a
        digest on a stopped engine, for single-shot use. Raises DigestError if
        any fetch failed.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("A digest is already in progress; skipping this run")
            return False
        self._cycle_owner = threading.get_ident()
        try:
            if not (self.running or force):
                return False
            self._digest()
            return True
        finally:
            self._cycle_owner = None
            self._cycle_lock.release()

    def _digest(self) -> None:
        logger.info("Starting digest...")
        self.dispatcher.emit("startDigest")

        sessions, sections_media = self._fetch(self.client)

        # Listeners only run inside emit(); a configure() from one of them bumps this
        generation = self._generation
        previous = self.snapshot
        session_diff = diff(
            previous.sessions,
            [Session.from_record(r) for r in sessions],
            session_key,
            track_ended=True,
        )
        self._log_malformed(session_diff)

        recently_added = previous.recently_added
        new_media: List[ServerRecord] = []
        for items in sections_media:
            media_diff = diff(recently_added, items, media_key)
            self._log_malformed(media_diff)
            recently_added = media_diff.entries
            new_media.extend(media_diff.added)

        self.snapshot = Snapshot(
            sessions=session_diff.entries,
            recently_added=recently_added,
            servers=previous.servers,
        )

        if self.bootstrap:
            logger.info(
                "Initial digest: cached %d session(s) and %d media item(s) without notifying",
                len(self.snapshot.sessions),
                len(self.snapshot.recently_added),
            )
        else:
            for s in session_diff.added:
                logger.info("%s has started watching %s on %s", s.user_title, s.title, s.player_title)
                self.dispatcher.emit("newSession", s)
            for s in session_diff.ended:
                logger.info("%s has stopped watching %s", s.user_title, s.title)
                self.dispatcher.emit("endSession", s)
            for item in new_media:
                logger.info("New media: %s", item.title)
                self.dispatcher.emit("newMedia", item)

        if self._generation != generation:
            logger.info("Reconfigured during the digest; not saving its results")
        else:
            try:
                self.store.save(self.snapshot)
                logger.info("Cache written to file.")
            except PersistenceError as e:
                logger.error("%s", e)

        self.dispatcher.emit("endDigest")
        logger.info("Digest complete.")
        if self._generation == generation:
            self.bootstrap = False

    def _fetch(self, client: Any) -> Tuple[List[ServerRecord], List[List[ServerRecord]]]:
        """
        Fetches sessions, sections and each section's recently-added items
        concurrently. Every branch runs to completion before failures are
        reported together.
        """
        failures: List[Tuple[str, Exception]] = []

        def collect(what: str, fut: Future) -> Optional[List[ServerRecord]]:
            try:
                return fut.result()
            except PlexError as e:
                failures.append((what, e))
                return None

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="digest-fetch") as pool:
            sessions_fut = pool.submit(client.get_sessions)
            sections_fut = pool.submit(client.get_sections)

            media_futs: List[Tuple[ServerRecord, Future]] = []
            for section in collect("sections", sections_fut) or []:
                if not section.key:
                    logger.warning("Skipping library section %r without a key", section.title)
                    continue
                media_futs.append((section, pool.submit(client.get_recently_added, section.key)))

            sessions = collect("sessions", sessions_fut) or []
            sections_media: List[List[ServerRecord]] = []
            for section, fut in media_futs:
                items = collect(f"section {section.key} ({section.title})", fut)
                if items is not None:
                    sections_media.append(items)

        if failures:
            raise DigestError(failures)
        return sessions, sections_media

    @staticmethod
    def _log_malformed(result: DiffResult) -> None:
        for _item, reason in result.malformed:
            logger.warning("Skipping malformed record: %s", reason)
