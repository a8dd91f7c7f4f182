"""Tests for MISPClient and event search."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from misp_mcp.client import SEARCH_EVENTS_PATH, MISPClient, SearchFilter
from misp_mcp.config import Config, SecretStr
from misp_mcp.errors import DecodeError, StatusError, TransportError
from misp_mcp.models import Attribute, Event, Org, Tag


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Tests for base URL normalization."""

    @pytest.mark.parametrize(
        "given, expected",
        [
            ("misp.example.org", "https://misp.example.org"),
            ("misp.example.org/", "https://misp.example.org"),
            ("https://misp.example.org/", "https://misp.example.org"),
            ("http://10.0.0.5:8080", "http://10.0.0.5:8080"),
            ("https://misp.example.org/sub/", "https://misp.example.org/sub"),
        ],
    )
    def test_base_url(self, given, expected):
        client = MISPClient(requests.Session(), given, "key")
        assert client.base_url == expected

    def test_repr_hides_key(self):
        client = MISPClient(requests.Session(), "misp.example.org", "secret-key")
        assert "secret-key" not in repr(client)

    def test_from_config_builds_session(self):
        config = Config(
            misp_url="misp.example.org",
            misp_key=SecretStr("k"),
            ssl_verify=False,
            timeout_seconds=12,
        )
        client = MISPClient.from_config(config)
        assert client.base_url == "https://misp.example.org"
        assert client._transport._session.verify is False
        assert client._transport._timeout == 12

    def test_from_config_uses_injected_session(self, mock_config):
        session = requests.Session()
        client = MISPClient.from_config(mock_config, session=session)
        assert client._transport._session is session


# =============================================================================
# Search Filter Assembly
# =============================================================================


class TestSearchFilter:
    """Tests for the omission rules of the restSearch body."""

    def test_defaults_send_nothing(self):
        assert SearchFilter.build().to_payload() == {}

    def test_all_fields(self):
        payload = SearchFilter.build(
            ["+apt"],
            ["-false-positive"],
            from_date="2024-01-01",
            to_date="2024-02-01",
            last="7d",
            event_id="1488",
            metadata=True,
            timestamp=datetime(2020, 1, 23, 9, 31, 59, tzinfo=timezone.utc),
            limit=10,
            page=2,
        ).to_payload()

        assert payload == {
            "tags": "+apt&&!-false-positive",
            "from": "2024-01-01",
            "to": "2024-02-01",
            "last": "7d",
            "eventid": "1488",
            "metadata": True,
            "timestamp": "1579771919",
            "limit": "10",
            "page": "2",
        }

    def test_empty_tags_omitted(self):
        assert "tags" not in SearchFilter.build([], []).to_payload()

    def test_metadata_false_omitted(self):
        assert "metadata" not in SearchFilter.build(metadata=False).to_payload()

    @pytest.mark.parametrize("limit", [0, -1, -100])
    def test_non_positive_limit_omits_paging(self, limit):
        payload = SearchFilter.build(limit=limit, page=3).to_payload()
        assert "limit" not in payload
        assert "page" not in payload

    def test_positive_limit_sends_both(self):
        payload = SearchFilter.build(limit=10, page=2).to_payload()
        assert payload["limit"] == "10"
        assert payload["page"] == "2"

    def test_page_zero_still_sent_with_limit(self):
        payload = SearchFilter.build(limit=5).to_payload()
        assert payload["limit"] == "5"
        assert payload["page"] == "0"

    def test_timestamp_with_offset(self):
        ts = datetime(2020, 1, 23, 10, 31, 59, tzinfo=timezone(timedelta(hours=1)))
        assert SearchFilter.build(timestamp=ts).timestamp == "1579771919"

    def test_naive_timestamp_is_utc(self):
        ts = datetime(2020, 1, 23, 9, 31, 59)
        assert SearchFilter.build(timestamp=ts).timestamp == "1579771919"

    def test_fields_are_explicit_optionals(self):
        search = SearchFilter.build(from_date="", last="1d")
        assert search.from_date is None
        assert search.last == "1d"


# =============================================================================
# Event Search
# =============================================================================


class TestSearchEvents:
    """End-to-end searches against the fake MISP."""

    def test_decodes_event(self, fake_misp, client, event_search_result):
        fake_misp.respond(SEARCH_EVENTS_PATH, event_search_result)

        events = client.search_events()

        assert events == [
            Event(
                id=1488,
                info="Test Event",
                date="2020-01-22",
                timestamp=1579771919,
                threat_level_id=3,
                published=False,
                orgc=Org(name="Test Org"),
                attributes=(
                    Attribute(
                        id=193850,
                        type="yara",
                        to_ids=True,
                        value="rule Test {condition: uint16(0) == 0x5a4d}",
                        deleted=False,
                    ),
                ),
                tags=(Tag(id=6, name="test_tag", colour="#140303", hide_tag=False),),
            )
        ]

    def test_request_shape(self, fake_misp, client, event_search_result):
        fake_misp.respond(SEARCH_EVENTS_PATH, event_search_result)

        client.search_events(["+tag1"], ["-tag2"], last="7d", limit=10, page=2)

        sent = fake_misp.last_request
        assert sent.method == "POST"
        assert sent.path == "/events/restSearch/download/"
        assert sent.headers["Authorization"] == "test-auth"
        assert sent.headers["Content-Type"] == "application/json"
        assert sent.headers["Accept"] == "application/json"
        assert sent.json() == {
            "tags": "+tag1&&!-tag2",
            "last": "7d",
            "limit": "10",
            "page": "2",
        }

    def test_no_paging_without_limit(self, fake_misp, client):
        fake_misp.respond(SEARCH_EVENTS_PATH, {"response": []})

        client.search_events(limit=0, page=2)

        body = fake_misp.last_request.json()
        assert "limit" not in body
        assert "page" not in body

    def test_zero_matches_is_empty_list(self, fake_misp, client):
        fake_misp.respond(SEARCH_EVENTS_PATH, {"response": []})

        events = client.search_events(["+nothing"], [])

        assert events == []
        assert isinstance(events, list)

    def test_order_preserved(self, fake_misp, client):
        fake_misp.respond(
            SEARCH_EVENTS_PATH,
            {"response": [{"Event": {"id": str(i), "info": f"e{i}"}} for i in (7, 2, 9)]},
        )
        events = client.search_events()
        assert [e.id for e in events] == [7, 2, 9]
        assert [e.info for e in events] == ["e7", "e2", "e9"]

    def test_unauthorized(self, fake_misp, session, event_search_result):
        fake_misp.respond(SEARCH_EVENTS_PATH, event_search_result)
        client = MISPClient(session, fake_misp.url, "unknown-key", timeout=5)

        with pytest.raises(StatusError) as exc_info:
            client.search_events()

        assert exc_info.value.status_code == 401

    def test_server_error_propagates(self, fake_misp, client):
        fake_misp.respond(SEARCH_EVENTS_PATH, {"message": "boom"}, status=500)
        with pytest.raises(StatusError) as exc_info:
            client.search_events()
        assert exc_info.value.status_code == 500

    def test_malformed_event_is_decode_error(self, fake_misp, client):
        fake_misp.respond(
            SEARCH_EVENTS_PATH,
            {"response": [{"Event": {"id": "1"}}, {"Event": {"id": "not-a-number"}}]},
        )
        with pytest.raises(DecodeError):
            client.search_events()

    def test_invalid_json_is_decode_error(self, fake_misp, client):
        fake_misp.routes[SEARCH_EVENTS_PATH.rstrip("/")] = (200, b"<html>")
        with pytest.raises(DecodeError):
            client.search_events()

    def test_transport_error_propagates_unchanged(self):
        session = MagicMock(spec=requests.Session)
        session.request.side_effect = requests.exceptions.ConnectionError("refused")
        client = MISPClient(session, "misp.example.org", "k")

        with pytest.raises(TransportError):
            client.search_events()

        assert session.request.call_count == 1
        args = session.request.call_args.args
        assert args == ("POST", "https://misp.example.org/events/restSearch/download/")

    def test_concurrent_searches(self, fake_misp, client, event_search_result):
        """One client serves several threads."""
        fake_misp.respond(SEARCH_EVENTS_PATH, event_search_result)
        results: list[list[Event]] = []
        errors: list[Exception] = []
        lock = threading.Lock()

        def search(i: int) -> None:
            try:
                events = client.search_events([f"+t{i}"], [])
            except Exception as e:  # pragma: no cover - surfaced by assert below
                with lock:
                    errors.append(e)
                return
            with lock:
                results.append(events)

        threads = [threading.Thread(target=search, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(results) == 8
        assert all(r[0].id == 1488 for r in results)
        sent_tags = sorted(r.json()["tags"] for r in fake_misp.requests)
        assert sent_tags == sorted(f"+t{i}" for i in range(8))


class TestRawAccess:
    """Tests for the generic get/post passthroughs."""

    def test_get(self, fake_misp, client):
        fake_misp.respond("/servers/getVersion", {"version": "2.4.180"})
        assert client.get("/servers/getVersion") == {"version": "2.4.180"}
        assert fake_misp.last_request.method == "GET"

    def test_post(self, fake_misp, client):
        fake_misp.respond("/attributes/restSearch", {"response": {"Attribute": []}})
        assert client.post("/attributes/restSearch", {"value": "1.2.3.4"}) == {
            "response": {"Attribute": []}
        }
        assert fake_misp.last_request.json() == {"value": "1.2.3.4"}
