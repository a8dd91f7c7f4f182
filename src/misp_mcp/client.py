"""MISP API client.

This module provides a typed interface to MISP's REST API, exposing the
event search as a simple Python method returning normalized entities.

The client holds only immutable settings plus the injected
``requests.Session``; concurrent calls from several threads are safe as
long as the session is.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import requests

from .config import Config, normalize_base_url
from .models import Event, unwrap_events
from .tags import chain
from .transport import Transport

logger = logging.getLogger(__name__)

SEARCH_EVENTS_PATH = "/events/restSearch/download/"


def _epoch_seconds(value: datetime) -> int:
    # Naive datetimes are taken as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


@dataclass(frozen=True)
class SearchFilter:
    """Body of a restSearch request.

    Every field is optional; ``None`` means the key is not sent at all.
    """

    tags: str | None = None
    from_date: str | None = None
    to_date: str | None = None
    last: str | None = None
    event_id: str | None = None
    metadata: bool | None = None
    timestamp: str | None = None
    limit: str | None = None
    page: str | None = None

    @classmethod
    def build(
        cls,
        include_tags: Sequence[str] | None = None,
        exclude_tags: Sequence[str] | None = None,
        from_date: str = "",
        to_date: str = "",
        last: str = "",
        event_id: str = "",
        metadata: bool = False,
        timestamp: datetime | None = None,
        limit: int = 0,
        page: int = 0,
    ) -> SearchFilter:
        """Apply the omission rules to caller arguments.

        Empty strings and a false ``metadata`` are dropped. ``limit`` and
        ``page`` are sent together, and only when ``limit > 0``.
        """
        tag_expression = chain(include_tags, exclude_tags)
        paged = limit > 0
        return cls(
            tags=tag_expression or None,
            from_date=from_date or None,
            to_date=to_date or None,
            last=last or None,
            event_id=event_id or None,
            metadata=True if metadata else None,
            timestamp=str(_epoch_seconds(timestamp)) if timestamp is not None else None,
            limit=str(limit) if paged else None,
            page=str(page) if paged else None,
        )

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON object sent to MISP, present keys only."""
        fields = (
            ("tags", self.tags),
            ("from", self.from_date),
            ("to", self.to_date),
            ("last", self.last),
            ("eventid", self.event_id),
            ("metadata", self.metadata),
            ("timestamp", self.timestamp),
            ("limit", self.limit),
            ("page", self.page),
        )
        return {key: value for key, value in fields if value is not None}


class MISPClient:
    """Client for a single MISP instance.

    Args:
        session: HTTP session used for every request (injected)
        base_url: MISP URL; ``https://`` is assumed when no scheme is given
            and a trailing slash is stripped
        auth: API key, sent verbatim in the Authorization header
        timeout: Per-request timeout in seconds passed to the session
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        auth: str,
        timeout: float | None = None,
    ) -> None:
        self._transport = Transport(
            session, normalize_base_url(base_url), auth, timeout=timeout
        )

    @classmethod
    def from_config(
        cls, config: Config, session: requests.Session | None = None
    ) -> MISPClient:
        """Build a client from a Config, creating a session if none is given."""
        if session is None:
            session = requests.Session()
            session.verify = config.ssl_verify
        return cls(
            session,
            config.misp_url,
            config.misp_key.get_secret_value(),
            timeout=config.timeout_seconds,
        )

    @property
    def base_url(self) -> str:
        return self._transport.base_url

    def __repr__(self) -> str:
        return f"MISPClient(base_url={self.base_url!r})"

    def get(self, path: str) -> Any:
        """Raw authenticated GET returning decoded JSON."""
        return self._transport.get(path)

    def post(self, path: str, payload: Any = None) -> Any:
        """Raw authenticated POST returning decoded JSON."""
        return self._transport.post(path, payload)

    def search_events(
        self,
        include_tags: Sequence[str] | None = None,
        exclude_tags: Sequence[str] | None = None,
        from_date: str = "",
        to_date: str = "",
        last: str = "",
        event_id: str = "",
        metadata: bool = False,
        timestamp: datetime | None = None,
        limit: int = 0,
        page: int = 0,
    ) -> list[Event]:
        """Search events with restSearch.

        Args:
            include_tags: Tags an event must carry
            exclude_tags: Tags an event must not carry
            from_date: Lower date bound (YYYY-MM-DD), "" for none
            to_date: Upper date bound, "" for none
            last: Relative window such as "7d", "" for none
            event_id: Restrict to one event, "" for none
            metadata: Return event metadata only (no attributes)
            timestamp: Only events modified at or after this time
            limit: Page size; 0 or less uses the server default
            page: Page number, only sent with a positive limit

        Returns:
            Events in response order; an empty list when nothing matches.

        Raises:
            TransportError, StatusError, DecodeError: unchanged from the
            underlying exchange.
        """
        search = SearchFilter.build(
            include_tags,
            exclude_tags,
            from_date=from_date,
            to_date=to_date,
            last=last,
            event_id=event_id,
            metadata=metadata,
            timestamp=timestamp,
            limit=limit,
            page=page,
        )
        payload = search.to_payload()
        logger.debug(
            "Searching events",
            extra={"filters": sorted(payload)},
        )
        document = self._transport.post(SEARCH_EVENTS_PATH, payload)
        events = unwrap_events(document)
        logger.debug("Event search returned", extra={"events": len(events)})
        return events
