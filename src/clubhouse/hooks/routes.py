"""Hook routes: authenticated tool-use callbacks from agent subprocesses."""

from __future__ import annotations

import inspect
import json
import logging
import secrets
from collections.abc import Awaitable, Callable
from typing import Any

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from clubhouse.config import DEFAULT_MAX_HOOK_BODY
from clubhouse.hooks.entries import NONCE_HEADER

logger = logging.getLogger(__name__)

AGENT_ID_HEADER = "X-Clubhouse-Agent-Id"

NonceLookup = Callable[[str], str | None]
EventSink = Callable[[str, dict[str, Any]], Awaitable[None] | None]


class BodyTooLargeError(Exception):
    """Raised when a hook request body exceeds the configured byte cap."""


async def read_capped_body(request: Request, limit: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise BodyTooLargeError(f"declared {declared} bytes")

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise BodyTooLargeError(f"more than {limit} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


def _nonce_matches(expected: str | None, received: str | None) -> bool:
    if not expected or received is None:
        return False
    return secrets.compare_digest(expected.encode(), received.encode())


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


def _unauthorized() -> JSONResponse:
    return JSONResponse({"error": "invalid nonce"}, status_code=401)


def create_hook_app(
    nonce_lookup: NonceLookup,
    event_sink: EventSink,
    *,
    max_body_bytes: int = DEFAULT_MAX_HOOK_BODY,
) -> Starlette:
    """Build the Starlette app served by the hook listener."""

    async def dispatch(agent_id: str, payload: dict[str, Any]) -> None:
        try:
            result = event_sink(agent_id, payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Hook event sink failed for agent {agent_id}")

    async def parse_body(request: Request, agent_id: str | None) -> dict[str, Any] | JSONResponse:
        try:
            body = await read_capped_body(request, max_body_bytes)
        except BodyTooLargeError as e:
            logger.warning(f"Dropped oversized hook body (agent={agent_id}): {e}")
            return _bad_request("body too large")

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Dropped malformed hook body (agent={agent_id}): {e}")
            return _bad_request("invalid JSON")
        if not isinstance(payload, dict):
            logger.warning(f"Dropped non-object hook body (agent={agent_id})")
            return _bad_request("body must be a JSON object")
        return payload

    def accept(agent_id: str, payload: dict[str, Any], event_hint: str | None) -> JSONResponse:
        # The URL hint fills in for CLIs that omit the event name from stdin
        if event_hint and not payload.get("hook_event_name"):
            payload["hook_event_name"] = event_hint
        return JSONResponse({"ok": True}, background=BackgroundTask(dispatch, agent_id, payload))

    async def agent_hook(request: Request) -> JSONResponse:
        agent_id: str = request.path_params["agent_id"]
        event_hint: str | None = request.path_params.get("event_hint")

        if not _nonce_matches(nonce_lookup(agent_id), request.headers.get(NONCE_HEADER)):
            logger.warning(f"Rejected hook event with invalid nonce: agent={agent_id}")
            return _unauthorized()

        parsed = await parse_body(request, agent_id)
        if isinstance(parsed, JSONResponse):
            return parsed
        return accept(agent_id, parsed, event_hint)

    async def legacy_hook(request: Request) -> JSONResponse:
        agent_id = request.headers.get(AGENT_ID_HEADER)
        if agent_id and not _nonce_matches(
            nonce_lookup(agent_id), request.headers.get(NONCE_HEADER)
        ):
            logger.warning(f"Rejected legacy hook event with invalid nonce: agent={agent_id}")
            return _unauthorized()

        parsed = await parse_body(request, agent_id)
        if isinstance(parsed, JSONResponse):
            return parsed

        if not agent_id:
            body_agent = parsed.get("agent_id")
            agent_id = body_agent if isinstance(body_agent, str) else None
            if not agent_id or not _nonce_matches(
                nonce_lookup(agent_id), request.headers.get(NONCE_HEADER)
            ):
                logger.warning(f"Rejected legacy hook event with invalid nonce: agent={agent_id}")
                return _unauthorized()

        return accept(agent_id, parsed, None)

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    routes = [
        Route("/health", health),
        Route("/hook", legacy_hook, methods=["POST"]),
        Route("/hook/{agent_id}", agent_hook, methods=["POST"]),
        Route("/hook/{agent_id}/{event_hint}", agent_hook, methods=["POST"]),
    ]
    return Starlette(routes=routes)
