"""Authenticated JSON transport for the MISP REST API.

One call is one HTTP exchange. Nothing is retried or cached here; every
failure is raised to the caller as exactly one of:

- RequestConstructionError: the request could not be built
- TransportError: connection, TLS or timeout failure
- StatusError: HTTP status outside 200-299 (body not inspected)
- DecodeError: body is not valid JSON (NaN and Infinity included)
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import requests

from .errors import (
    DecodeError,
    RequestConstructionError,
    StatusError,
    TransportError,
)

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"

# requests raises these before anything reaches the network
_CONSTRUCTION_ERRORS = (
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.InvalidURL,
    requests.exceptions.InvalidHeader,
    # http.client encodes header values as latin-1
    UnicodeError,
)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


class Transport:
    """Send authenticated JSON requests through an injected session.

    The session owns pooling, TLS and proxies. A Transport only holds
    immutable settings, so one instance may be shared across threads as
    long as the session is.
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        auth: str,
        timeout: float | None = None,
    ) -> None:
        self._session = session
        self._base_url = base_url
        self._auth = auth
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def __repr__(self) -> str:
        return f"Transport(base_url={self._base_url!r}, auth=***)"

    def get(self, path: str) -> Any:
        """GET ``base_url + path`` and return the decoded JSON body."""
        headers = {
            "Accept": JSON_MEDIA_TYPE,
            "Authorization": self._auth,
        }
        return self._do("GET", path, headers, None)

    def post(self, path: str, payload: Any = None) -> Any:
        """POST ``payload`` as JSON and return the decoded JSON body.

        A ``None`` payload sends an empty body.
        """
        body = None
        if payload is not None:
            try:
                body = json.dumps(payload, allow_nan=False).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise RequestConstructionError(
                    f"cannot encode request body for {path}: {e}"
                ) from e
        headers = {
            "Content-Type": JSON_MEDIA_TYPE,
            "Accept": JSON_MEDIA_TYPE,
            "Authorization": self._auth,
        }
        return self._do("POST", path, headers, body)

    def _do(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        body: bytes | None,
    ) -> Any:
        url = self._base_url + path
        start = time.monotonic()
        try:
            response = self._session.request(
                method,
                url,
                data=body,
                headers=headers,
                timeout=self._timeout,
            )
        except _CONSTRUCTION_ERRORS as e:
            raise RequestConstructionError(
                f"invalid {method} request for {path}: {e}"
            ) from e
        except requests.exceptions.RequestException as e:
            logger.warning(
                "MISP request failed",
                extra={
                    "method": method,
                    "path": path,
                    "error_type": type(e).__name__,
                },
            )
            raise TransportError(f"{method} {path} failed: {e}") from e

        elapsed_ms = (time.monotonic() - start) * 1000
        status = response.status_code
        if status < 200 or status > 299:
            logger.warning(
                "MISP returned bad status",
                extra={"method": method, "path": path, "status": status},
            )
            raise StatusError(status, path)

        # Body is already fully buffered (no stream=True)
        content = response.content
        logger.debug(
            "MISP request completed",
            extra={
                "method": method,
                "path": path,
                "status": status,
                "bytes": len(content),
                "elapsed_ms": round(elapsed_ms, 1),
            },
        )

        try:
            return json.loads(content, parse_constant=_reject_constant)
        except (ValueError, RecursionError) as e:
            raise DecodeError(f"invalid JSON from {method} {path}: {e}") from e
