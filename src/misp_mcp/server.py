"""MCP Server for MISP threat intelligence.

Exposes the MISP event search as a read-only MCP tool.

Security:
- All inputs validated before processing
- Errors sanitized before returning to clients
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import requests
from mcp.server import Server
from mcp.types import TextContent, Tool

from .client import MISPClient
from .config import Config
from .errors import (
    ConfigurationError,
    MISPMCPError,
    StatusError,
    ValidationError,
)
from .logging import clear_request_id, set_request_id
from .validation import (
    MAX_TAG_LENGTH,
    MAX_TAGS,
    sanitize_for_log,
    validate_bool,
    validate_date,
    validate_event_id,
    validate_last,
    validate_limit,
    validate_page,
    validate_since,
    validate_tags,
)

logger = logging.getLogger(__name__)

_INSTRUCTIONS = (
    "Read-only access to a MISP threat-intelligence instance. "
    "Use search_events to find events by tag, date range or relative "
    "window. Tags in exclude_tags are negated; tag names are passed to "
    "MISP unchanged."
)

_TAG_LIST_SCHEMA = {
    "type": "array",
    "items": {"type": "string", "maxLength": MAX_TAG_LENGTH},
    "maxItems": MAX_TAGS,
}


class MISPMCPServer:
    """MCP server for MISP (read-only)."""

    def __init__(
        self, config: Config, session: requests.Session | None = None
    ) -> None:
        self.config = config
        self.client = MISPClient.from_config(config, session=session)
        self.server = Server("misp-mcp", instructions=_INSTRUCTIONS)
        self._register_tools()

        logger.info("Server started in read-only mode")

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            return self.tool_definitions()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict) -> list[TextContent]:
            return await self.handle_call(name, arguments)

    def tool_definitions(self) -> list[Tool]:
        return [
            Tool(
                name="get_health",
                description="Show the configured MISP instance.",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="search_events",
                description=(
                    "Search MISP events by tags, date range, relative window "
                    "or event id. Returns events with their attributes and tags."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "include_tags": {
                            **_TAG_LIST_SCHEMA,
                            "description": "Tags every returned event must carry",
                        },
                        "exclude_tags": {
                            **_TAG_LIST_SCHEMA,
                            "description": "Tags returned events must not carry",
                        },
                        "from": {
                            "type": "string",
                            "description": "Event date >= (YYYY-MM-DD)",
                        },
                        "to": {
                            "type": "string",
                            "description": "Event date <= (YYYY-MM-DD)",
                        },
                        "last": {
                            "type": "string",
                            "description": "Published within window, e.g. 7d, 12h",
                        },
                        "event_id": {
                            "type": "string",
                            "description": "Restrict the search to one event",
                        },
                        "metadata_only": {
                            "type": "boolean",
                            "description": "Omit attributes from results",
                            "default": False,
                        },
                        "since": {
                            "type": "string",
                            "description": "Modified at or after (ISO 8601)",
                        },
                        "limit": {
                            "type": "integer",
                            "description": (
                                "Page size (0 = server default, max "
                                f"{self.config.max_results})"
                            ),
                            "default": 0,
                            "minimum": 0,
                            "maximum": self.config.max_results,
                        },
                        "page": {
                            "type": "integer",
                            "description": "Page number, used with limit",
                            "default": 1,
                            "minimum": 1,
                        },
                    },
                },
            ),
        ]

    async def handle_call(self, name: str, arguments: dict | None) -> list[TextContent]:
        """Run a tool and render the result or error as JSON text."""
        arguments = arguments or {}
        set_request_id()
        start = time.monotonic()
        try:
            result = await self._dispatch_tool(name, arguments)
            logger.info(
                "Tool completed",
                extra={
                    "tool": name,
                    "elapsed_ms": round((time.monotonic() - start) * 1000, 1),
                },
            )
            return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

        except ValidationError as e:
            logger.warning(
                "Validation failed",
                extra={
                    "tool": name,
                    "error": str(e),
                    "arguments": sanitize_for_log(arguments),
                },
            )
            return self._error_response("validation_error", str(e))

        except StatusError as e:
            logger.error(
                "MISP rejected request",
                extra={"tool": name, "status": e.status_code},
            )
            return self._error_response(
                "status_error", e.safe_message, status_code=e.status_code
            )

        except ConfigurationError as e:
            logger.error("Configuration error", extra={"error": str(e)})
            return self._error_response(
                "configuration_error",
                "MISP is not properly configured. Check server settings.",
            )

        except MISPMCPError as e:
            logger.error(
                "MISP error",
                extra={
                    "tool": name,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            return self._error_response(type(e).__name__.lower(), e.safe_message)

        except Exception as e:
            logger.exception(
                "Internal error",
                extra={"tool": name, "error_type": type(e).__name__},
            )
            return self._error_response(
                "internal_error", "An unexpected error occurred. Check server logs."
            )

        finally:
            clear_request_id()

    @staticmethod
    def _error_response(
        error_code: str, message: str, **extra_fields: Any
    ) -> list[TextContent]:
        response: dict[str, Any] = {"error": error_code, "message": message}
        response.update(extra_fields)
        return [TextContent(type="text", text=json.dumps(response))]

    async def _dispatch_tool(self, name: str, arguments: dict) -> dict[str, Any]:
        """Dispatch tool call to appropriate handler."""

        if name == "get_health":
            return {"status": "configured", "misp_url": self.client.base_url}

        elif name == "search_events":
            include_tags = validate_tags(arguments.get("include_tags"), "include_tags")
            exclude_tags = validate_tags(arguments.get("exclude_tags"), "exclude_tags")
            from_date = validate_date(arguments.get("from"), "from")
            to_date = validate_date(arguments.get("to"), "to")
            if from_date and to_date and from_date > to_date:
                raise ValidationError("from must not be after to")
            last = validate_last(arguments.get("last"))
            event_id = validate_event_id(arguments.get("event_id"))
            since = validate_since(arguments.get("since"))
            limit = validate_limit(arguments.get("limit"), self.config.max_results)
            page = validate_page(arguments.get("page")) if limit else 0
            metadata_only = validate_bool(
                arguments.get("metadata_only"), "metadata_only"
            )

            events = await asyncio.to_thread(
                self.client.search_events,
                include_tags,
                exclude_tags,
                from_date=from_date,
                to_date=to_date,
                last=last,
                event_id=event_id,
                metadata=metadata_only,
                timestamp=since,
                limit=limit,
                page=page,
            )
            result: dict[str, Any] = {
                "events": [event.to_dict() for event in events],
                "total": len(events),
            }
            if limit:
                result["limit"] = limit
                result["page"] = page
            return result

        else:
            raise ValidationError(f"Unknown tool: {name}")

    async def run(self) -> None:
        """Run the MCP server over stdio."""
        from mcp.server.stdio import stdio_server

        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream, write_stream, self.server.create_initialization_options()
            )
