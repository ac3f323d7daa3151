from __future__ import annotations

import argparse
import signal
import threading

from plexdigest.config import ConfigError, build_server_config, load_config, optional_path
from plexdigest.configure import run_setup
from plexdigest.digest import DigestEngine, DigestError
from plexdigest.logging_config import setup_logging
from plexdigest.providers.plex import PlexError


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="plexdigest: watch a Plex server and report new playback sessions and newly added media."
    )
    ap.add_argument("--config", default=None, help="Path to config file (default: ~/.config/plexdigest/config.toml)")
    ap.add_argument("--setup", action="store_true", help="Interactively write the config file and exit")

    # Server
    ap.add_argument("--hostname", default=None, help="Plex server host name (overrides config)")
    ap.add_argument("--port", type=int, default=None, help="Plex server port (overrides config)")
    ap.add_argument("--https", action=argparse.BooleanOptionalAction, default=None, help="Connect over HTTPS or plain HTTP (overrides config)")
    ap.add_argument("--token", default=None, help="Plex authentication token (overrides config)")
    ap.add_argument("--refresh", type=float, default=None, help="Minutes between digests (overrides config)")

    # Cache / runtime
    ap.add_argument("--cache", default=None, help="Cache file (default: ~/.cache/plexdigest/cache.json)")
    ap.add_argument("--once", action="store_true", help="Run a single digest and exit")
    ap.add_argument("--log-level", default="INFO", help="error, warning, info or debug")
    return ap


def _print_listeners(engine: DigestEngine) -> None:
    engine.on("newSession", lambda s: print(f"Session: {s.user_title} has started watching {s.title} on {s.player_title}"))
    engine.on("endSession", lambda s: print(f"Session: {s.user_title} has stopped watching {s.title}"))
    engine.on("newMedia", lambda item: print(f"Media: {item.title}"))


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    config_path = optional_path(args.config)

    try:
        if args.setup:
            run_setup(config_path)
            return 0

        cfg = load_config(config_path)
        config = build_server_config(
            cfg,
            hostname=args.hostname,
            port=args.port,
            https=args.https,
            token=args.token,
            refresh_duration=args.refresh,
            cache_path=args.cache,
        )
    except ConfigError as e:
        raise SystemExit(str(e))
    except PlexError as e:
        raise SystemExit(f"Setup failed: {e}")

    engine = DigestEngine(config)
    _print_listeners(engine)

    try:
        engine.check_connection()
    except PlexError as e:
        raise SystemExit(f"Could not reach the Plex server at {config.base_url}: {e}")

    if args.once:
        try:
            engine.run_cycle(force=True)
        except DigestError as e:
            print(f"Digest failed: {e}")
            return 1
        return 0

    done = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: done.set())

    engine.on("exit", done.set)
    engine.start()
    done.wait()
    engine.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
