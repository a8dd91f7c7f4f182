"""Normalized MISP entities decoded from restSearch responses.

Only the fields listed on each class are read from the wire; MISP sends
many more (uuid, distribution, category, ...) which are ignored.

Decoding rules:
- Keys are matched exactly first, then case-insensitively, so both
  ``attribute`` and MISP's ``Attribute`` are accepted.
- Missing or null fields decode to zero values.
- Identifiers and timestamps are decimal strings on the wire and are
  parsed into ints; bare JSON numbers, padding and out-of-range values
  raise DecodeError. threat_level_id must fit in a signed byte.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import DecodeError

_MISSING = object()


def _lookup(data: dict[str, Any], key: str) -> Any:
    """Return data[key], falling back to a case-insensitive match."""
    if key in data:
        return data[key]
    folded = key.casefold()
    for name, value in data.items():
        if isinstance(name, str) and name.casefold() == folded:
            return value
    return _MISSING


def _require_object(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise DecodeError(f"{where}: expected object, got {type(value).__name__}")
    return value


def _str_field(data: dict[str, Any], key: str, where: str) -> str:
    value = _lookup(data, key)
    if value is _MISSING or value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"{where}.{key}: expected string, got {type(value).__name__}")
    return value


def _bool_field(data: dict[str, Any], key: str, where: str) -> bool:
    value = _lookup(data, key)
    if value is _MISSING or value is None:
        return False
    if not isinstance(value, bool):
        raise DecodeError(f"{where}.{key}: expected boolean, got {type(value).__name__}")
    return value


def _int_field(
    data: dict[str, Any], key: str, where: str, bits: int = 64
) -> int:
    """Parse a string-encoded decimal integer that fits a signed ``bits`` int."""
    value = _lookup(data, key)
    if value is _MISSING or value is None:
        return 0
    if not isinstance(value, str):
        raise DecodeError(
            f"{where}.{key}: expected string-encoded integer, got {type(value).__name__}"
        )
    digits = value[1:] if value[:1] == "-" else value
    if not (digits.isascii() and digits.isdigit()):
        raise DecodeError(f"{where}.{key}: invalid integer {value!r}")
    bound = 1 << (bits - 1)
    # Length check keeps int() clear of the interpreter's digit limit
    if len(digits) > len(str(bound)) or not -bound <= int(value) < bound:
        raise DecodeError(f"{where}.{key}: {value[:40]!r} out of range for int{bits}")
    return int(value)


def _list_field(data: dict[str, Any], key: str, where: str) -> list[Any]:
    value = _lookup(data, key)
    if value is _MISSING or value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"{where}.{key}: expected array, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Org:
    """Creator organisation of an event (``Orgc``)."""

    name: str = ""

    @classmethod
    def from_dict(cls, data: Any, where: str = "Orgc") -> Org:
        data = _require_object(data, where)
        return cls(name=_str_field(data, "name", where))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Attribute:
    """A single indicator attached to an event."""

    id: int = 0
    type: str = ""
    to_ids: bool = False
    value: str = ""
    deleted: bool = False

    @classmethod
    def from_dict(cls, data: Any, where: str = "Attribute") -> Attribute:
        data = _require_object(data, where)
        return cls(
            id=_int_field(data, "id", where),
            type=_str_field(data, "type", where),
            to_ids=_bool_field(data, "to_ids", where),
            value=_str_field(data, "value", where),
            deleted=_bool_field(data, "deleted", where),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Tag:
    """Classification tag. ``hide_tag`` is passed through untouched."""

    id: int = 0
    name: str = ""
    colour: str = ""
    hide_tag: bool = False

    @classmethod
    def from_dict(cls, data: Any, where: str = "Tag") -> Tag:
        data = _require_object(data, where)
        return cls(
            id=_int_field(data, "id", where),
            name=_str_field(data, "name", where),
            colour=_str_field(data, "colour", where),
            hide_tag=_bool_field(data, "hide_tag", where),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Event:
    """A MISP event with its attributes and tags."""

    id: int = 0
    info: str = ""
    date: str = ""
    timestamp: int = 0
    threat_level_id: int = 0
    published: bool = False
    orgc: Org = field(default_factory=Org)
    attributes: tuple[Attribute, ...] = ()
    tags: tuple[Tag, ...] = ()

    @classmethod
    def from_dict(cls, data: Any, where: str = "Event") -> Event:
        """Decode an event object, ignoring fields outside the model."""
        data = _require_object(data, where)

        orgc_data = _lookup(data, "Orgc")
        if orgc_data is _MISSING or orgc_data is None:
            orgc = Org()
        else:
            orgc = Org.from_dict(orgc_data, f"{where}.Orgc")

        attributes = tuple(
            Attribute.from_dict(item, f"{where}.attribute[{i}]")
            for i, item in enumerate(_list_field(data, "attribute", where))
        )
        tags = tuple(
            Tag.from_dict(item, f"{where}.tag[{i}]")
            for i, item in enumerate(_list_field(data, "tag", where))
        )

        return cls(
            id=_int_field(data, "id", where),
            info=_str_field(data, "info", where),
            date=_str_field(data, "date", where),
            timestamp=_int_field(data, "timestamp", where),
            threat_level_id=_int_field(data, "threat_level_id", where, bits=8),
            published=_bool_field(data, "published", where),
            orgc=orgc,
            attributes=attributes,
            tags=tags,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "info": self.info,
            "date": self.date,
            "timestamp": self.timestamp,
            "threat_level_id": self.threat_level_id,
            "published": self.published,
            "orgc": self.orgc.to_dict(),
            "attributes": [a.to_dict() for a in self.attributes],
            "tags": [t.to_dict() for t in self.tags],
        }


def unwrap_events(document: Any) -> list[Event]:
    """Flatten ``{"response": [{"Event": {...}}, ...]}`` into events.

    An empty or missing ``response`` list is a valid, empty result.
    """
    document = _require_object(document, "response document")
    envelopes = _list_field(document, "response", "response document")
    events = []
    for i, envelope in enumerate(envelopes):
        where = f"response[{i}]"
        envelope = _require_object(envelope, where)
        event_data = _lookup(envelope, "Event")
        if event_data is _MISSING or event_data is None:
            raise DecodeError(f"{where}: missing Event")
        events.append(Event.from_dict(event_data, f"{where}.Event"))
    return events
