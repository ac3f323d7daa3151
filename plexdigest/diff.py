from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, Iterable, List, Mapping, Tuple, TypeVar

from plexdigest.types import MalformedRecordError, ServerRecord, Session

T = TypeVar("T")


@dataclass
class DiffResult(Generic[T]):
    entries: Dict[str, T]                     # the updated map for this domain
    added: List[T] = field(default_factory=list)
    ended: List[T] = field(default_factory=list)
    malformed: List[Tuple[T, str]] = field(default_factory=list)   # (item, reason)


def session_key(session: Session) -> str:
    """
    Cache key of a playback session.

    The transcode session key is used when present; direct-play sessions have
    no TranscodeSession, so they fall back to the session's own sessionKey.
    """
    if session.transcode is not None and session.transcode.key:
        return f"session:{session.transcode.key}"
    own_key = session.record.get("sessionKey")
    if own_key not in (None, ""):
        return f"session:{own_key}"
    raise MalformedRecordError(f"Session {session.title!r} has neither a TranscodeSession key nor a sessionKey")


def media_key(item: ServerRecord) -> str:
    rating_key = item.get("ratingKey")
    if rating_key in (None, ""):
        raise MalformedRecordError(f"Media item {item.title!r} has no ratingKey")
    return str(rating_key)


def diff(
    previous: Mapping[str, T],
    fresh: Iterable[T],
    key_fn: Callable[[T], str],
    *,
    track_ended: bool = False,
) -> DiffResult[T]:
    """
    Compares a freshly fetched collection with the previous map.

    - track_ended=True: the result holds only the fresh items, and previous
      keys that disappeared are reported as ended (sessions).
    - track_ended=False: the result keeps every previous entry (media; the
      cache only grows).

    ``previous`` is never mutated.
    """
    entries: Dict[str, T] = {} if track_ended else dict(previous)
    result: DiffResult[T] = DiffResult(entries=entries)
    seen = set()

    for item in fresh:
        try:
            key = key_fn(item)
        except MalformedRecordError as e:
            result.malformed.append((item, str(e)))
            continue
        if key not in previous and key not in seen:
            result.added.append(item)
        seen.add(key)
        entries[key] = item

    if track_ended:
        for key, item in previous.items():
            if key not in entries:
                result.ended.append(item)

    return result
