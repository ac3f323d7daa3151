from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


class MalformedRecordError(ValueError):
    pass


@dataclass(frozen=True)
class ServerRecord:
    element_type: str                  # e.g. Directory, Metadata, User, Player, TranscodeSession
    attributes: Dict[str, Any] = field(default_factory=dict)
    children: Tuple["ServerRecord", ...] = ()

    @classmethod
    def from_element(cls, element_type: str, data: Any) -> "ServerRecord":
        """
        Builds a record from one element of a Plex JSON response.

        Nested objects (and lists of objects under a capitalized name, which is
        how Plex marks child elements) become children tagged with their key.
        Everything else is kept as an attribute.
        """
        if not isinstance(data, dict):
            raise MalformedRecordError(f"{element_type} element is not an object: {type(data).__name__}")

        attributes: Dict[str, Any] = {}
        children: List[ServerRecord] = []
        for name, value in data.items():
            if isinstance(value, dict):
                children.append(cls.from_element(name, value))
            elif isinstance(value, list) and name[:1].isupper():
                children.extend(cls.from_element(name, v) for v in value)
            else:
                attributes[name] = value
        return cls(element_type=element_type, attributes=attributes, children=tuple(children))

    @classmethod
    def from_dict(cls, data: Any) -> "ServerRecord":
        if not isinstance(data, dict) or not isinstance(data.get("type"), str):
            raise MalformedRecordError(f"Not a serialized record: {data!r}")
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise MalformedRecordError(f"Record attributes must be an object: {attributes!r}")
        children = data.get("children") or []
        if not isinstance(children, list):
            raise MalformedRecordError(f"Record children must be a list: {children!r}")
        return cls(
            element_type=data["type"],
            attributes=dict(attributes),
            children=tuple(cls.from_dict(c) for c in children),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.element_type,
            "attributes": dict(self.attributes),
            "children": [c.to_dict() for c in self.children],
        }

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def child(self, element_type: str) -> Optional["ServerRecord"]:
        for c in self.children:
            if c.element_type == element_type:
                return c
        return None

    @property
    def key(self) -> Optional[str]:
        value = self.attributes.get("key")
        return None if value is None else str(value)

    @property
    def title(self) -> Optional[str]:
        return self.attributes.get("title")


def records_from_container(payload: Any) -> List[ServerRecord]:
    """
    Returns the child records of a Plex ``MediaContainer`` response.
    Accepts either the full response or the bare container object.
    """
    if not isinstance(payload, dict):
        raise MalformedRecordError(f"Unexpected response type: {type(payload).__name__}")
    container = payload.get("MediaContainer", payload)
    root = ServerRecord.from_element("MediaContainer", container)
    return list(root.children)


def _optional_record(data: Any) -> Optional[ServerRecord]:
    return None if data is None else ServerRecord.from_dict(data)


@dataclass(frozen=True)
class Session:
    record: ServerRecord
    user: Optional[ServerRecord] = None
    player: Optional[ServerRecord] = None
    transcode: Optional[ServerRecord] = None

    @classmethod
    def from_record(cls, record: ServerRecord) -> "Session":
        return cls(
            record=record,
            user=record.child("User"),
            player=record.child("Player"),
            transcode=record.child("TranscodeSession"),
        )

    @classmethod
    def from_dict(cls, data: Any) -> "Session":
        if not isinstance(data, dict):
            raise MalformedRecordError(f"Not a serialized session: {data!r}")
        return cls(
            record=ServerRecord.from_dict(data),
            user=_optional_record(data.get("user")),
            player=_optional_record(data.get("player")),
            transcode=_optional_record(data.get("transcode")),
        )

    def to_dict(self) -> dict:
        d = self.record.to_dict()
        d["user"] = self.user.to_dict() if self.user else None
        d["player"] = self.player.to_dict() if self.player else None
        d["transcode"] = self.transcode.to_dict() if self.transcode else None
        return d

    @property
    def title(self) -> Optional[str]:
        return self.record.title

    @property
    def user_title(self) -> str:
        return (self.user.title if self.user else None) or "Someone"

    @property
    def player_title(self) -> str:
        return (self.player.title if self.player else None) or "an unknown player"


@dataclass
class Snapshot:
    sessions: Dict[str, Session] = field(default_factory=dict)
    recently_added: Dict[str, ServerRecord] = field(default_factory=dict)
    servers: Dict[str, ServerRecord] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        if not isinstance(data, dict):
            raise MalformedRecordError(f"Snapshot must be an object, got {type(data).__name__}")
        sections = {}
        for name in ("recentlyAdded", "servers", "sessions"):
            section = data.get(name, {})
            if not isinstance(section, dict):
                raise MalformedRecordError(f"Snapshot section {name!r} must be an object")
            sections[name] = section
        return cls(
            sessions={k: Session.from_dict(v) for k, v in sections["sessions"].items()},
            recently_added={k: ServerRecord.from_dict(v) for k, v in sections["recentlyAdded"].items()},
            servers={k: ServerRecord.from_dict(v) for k, v in sections["servers"].items()},
        )

    def to_dict(self) -> dict:
        return {
            "recentlyAdded": {k: v.to_dict() for k, v in self.recently_added.items()},
            "servers": {k: v.to_dict() for k, v in self.servers.items()},
            "sessions": {k: v.to_dict() for k, v in self.sessions.items()},
        }
