"""Pytest fixtures for MISP MCP tests."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import pytest
import requests

from misp_mcp.client import MISPClient
from misp_mcp.config import Config, SecretStr
from misp_mcp.server import MISPMCPServer

TEST_AUTH = "test-auth"
SEARCH_PATH = "/events/restSearch/download"

EVENT_SEARCH_RESULT = {
    "response": [
        {
            "Event": {
                "id": "1488",
                "orgc_id": "2",
                "org_id": "2",
                "date": "2020-01-22",
                "threat_level_id": "3",
                "info": "Test Event",
                "published": False,
                "uuid": "5e287d09-b3a0-4741-bbea-7ae3ac1c1da0",
                "attribute_count": "1",
                "analysis": "0",
                "timestamp": "1579771919",
                "distribution": "0",
                "proposal_email_lock": False,
                "locked": False,
                "publish_timestamp": "0",
                "sharing_group_id": "0",
                "disable_correlation": False,
                "extends_uuid": "",
                "event_creator_email": "admin@example.org",
                "Org": {
                    "id": "2",
                    "name": "Test Org",
                    "uuid": "5b15605c-4248-4f8f-ac51-04c0ac1c1da0",
                },
                "Orgc": {
                    "id": "2",
                    "name": "Test Org",
                    "uuid": "5b15605c-4248-4f8f-ac51-04c0ac1c1da0",
                },
                "Attribute": [
                    {
                        "id": "193850",
                        "type": "yara",
                        "category": "Payload delivery",
                        "to_ids": True,
                        "uuid": "5e287dc3-39bc-423b-9113-7e60ac1c1da0",
                        "event_id": "1488",
                        "distribution": "5",
                        "timestamp": "1579711939",
                        "comment": "",
                        "sharing_group_id": "0",
                        "deleted": False,
                        "disable_correlation": False,
                        "object_id": "0",
                        "object_relation": None,
                        "value": "rule Test {condition: uint16(0) == 0x5a4d}",
                        "Galaxy": [],
                        "ShadowAttribute": [],
                    }
                ],
                "ShadowAttribute": [],
                "RelatedEvent": [],
                "Galaxy": [],
                "Object": [],
                "Tag": [
                    {
                        "id": "6",
                        "name": "test_tag",
                        "colour": "#140303",
                        "exportable": True,
                        "user_id": False,
                        "hide_tag": False,
                    }
                ],
            }
        }
    ]
}


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: dict[str, str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class FakeMISP:
    """In-process MISP stand-in.

    Requests without the expected Authorization header get 401; unknown
    paths get 404. ``routes`` maps a path (trailing slash ignored) to a
    (status, body) pair.
    """

    url: str = ""
    routes: dict[str, tuple[int, bytes]] = field(default_factory=dict)
    requests: list[RecordedRequest] = field(default_factory=list)

    def respond(self, path: str, body: Any, status: int = 200) -> None:
        if not isinstance(body, bytes):
            body = json.dumps(body).encode("utf-8")
        self.routes[path.rstrip("/")] = (status, body)

    @property
    def last_request(self) -> RecordedRequest:
        return self.requests[-1]


def _make_handler(fake: FakeMISP) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        def _handle(self) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            body = self.rfile.read(length) if length else b""
            fake.requests.append(
                RecordedRequest(
                    method=self.command,
                    path=self.path,
                    headers=dict(self.headers.items()),
                    body=body,
                )
            )
            if self.headers.get("Authorization") != TEST_AUTH:
                self._send(401, b"")
                return
            route = fake.routes.get(self.path.rstrip("/"))
            if route is None:
                self._send(404, b"")
                return
            self._send(*route)

        def _send(self, status: int, body: bytes) -> None:
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        do_GET = _handle
        do_POST = _handle

        def log_message(self, format: str, *args: Any) -> None:
            pass

    return Handler


@pytest.fixture
def fake_misp():
    """Start a fake MISP on a random local port."""
    fake = FakeMISP()
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(fake))
    host, port = httpd.server_address[:2]
    fake.url = f"http://{host}:{port}"
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield fake
    httpd.shutdown()
    httpd.server_close()
    thread.join(timeout=5)


@pytest.fixture
def session():
    with requests.Session() as s:
        # Ignore proxy settings from the environment
        s.trust_env = False
        yield s


@pytest.fixture
def client(fake_misp: FakeMISP, session: requests.Session) -> MISPClient:
    """Client pointed at the fake MISP with valid credentials."""
    return MISPClient(session, fake_misp.url, TEST_AUTH, timeout=5)


@pytest.fixture
def mock_config() -> Config:
    """Create a test configuration."""
    return Config(
        misp_url="https://misp.example.org",
        misp_key=SecretStr("test-key-12345"),
        timeout_seconds=30,
        max_results=50,
    )


@pytest.fixture
def server_for(session: requests.Session):
    """Build an MCP server whose client talks to a fake MISP."""

    def _build(fake: FakeMISP, key: str = TEST_AUTH) -> MISPMCPServer:
        config = Config(
            misp_url=fake.url,
            misp_key=SecretStr(key),
            timeout_seconds=5,
            max_results=50,
        )
        return MISPMCPServer(config, session=session)

    return _build


@pytest.fixture
def event_search_result() -> dict[str, Any]:
    """A restSearch response with one fully populated event."""
    return json.loads(json.dumps(EVENT_SEARCH_RESULT))


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging so caplog sees package records in every test."""
    yield
    logger = logging.getLogger("misp_mcp")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
