"""Machine-injected hook entries: build, classify, strip, and merge.

Settings files are treated as plain JSON documents. Every function here is
pure: inputs are never mutated and no file I/O happens, so the merge/strip
round trip can be tested without touching disk.

Two entry shapes are recognised inside ``settings["hooks"][<event>]``:

- grouped (Claude Code): ``{"matcher": ..., "hooks": [{"type": "command", "command": ...}]}``
- flat (Copilot CLI): ``{"type": "command", "bash": ...}``
"""

from __future__ import annotations

import copy
import re
from typing import Any, cast

AGENT_ID_ENV = "CLUBHOUSE_AGENT_ID"
NONCE_ENV = "CLUBHOUSE_HOOK_NONCE"
NONCE_HEADER = "X-Clubhouse-Nonce"

_HOOK_URL_RE = re.compile(r"https?://(?:127\.0\.0\.1|localhost|\[::1\]):\d+/hook/")
_AGENT_URL_MARKER = f"/hook/${{{AGENT_ID_ENV}}}"
_COMMAND_FIELDS = ("command", "bash")


def build_hook_command(hook_url: str, event_hint: str | None = None) -> str:
    """Shell command that POSTs the hook's stdin to the listener.

    The trailing ``|| true`` keeps a slow or missing listener from failing
    the agent's own tool call.
    """
    target = f"{hook_url}/${{{AGENT_ID_ENV}}}"
    if event_hint:
        target = f"{target}/{event_hint}"
    return (
        f"cat | curl -s -X POST {target} -H 'Content-Type: application/json' "
        f'-H "{NONCE_HEADER}: ${{{NONCE_ENV}}}" --data-binary @- || true'
    )


def is_clubhouse_command(cmd: str) -> bool:
    return _AGENT_URL_MARKER in cmd or bool(_HOOK_URL_RE.search(cmd))


def _is_clubhouse_handler(handler: object) -> bool:
    if not isinstance(handler, dict):
        return False
    for field in _COMMAND_FIELDS:
        value = handler.get(field)
        if isinstance(value, str) and is_clubhouse_command(value):
            return True
    return False


def is_clubhouse_hook_entry(entry: object) -> bool:
    """Return True if a hook-list entry invokes the local hook listener."""
    if not isinstance(entry, dict):
        return False
    entry = cast(dict[str, Any], entry)

    inner = entry.get("hooks")
    if isinstance(inner, list):
        return any(_is_clubhouse_handler(h) for h in inner)

    return _is_clubhouse_handler(entry)


def _strip_entry(entry: object) -> object | None:
    """Return entry without machine handlers, or None if nothing is left."""
    if not isinstance(entry, dict):
        return entry
    inner = entry.get("hooks")
    if isinstance(inner, list):
        kept = [h for h in inner if not _is_clubhouse_handler(h)]
        if len(kept) == len(inner):
            return entry
        if not kept:
            return None
        return {**entry, "hooks": kept}
    if _is_clubhouse_handler(entry):
        return None
    return entry


def strip_clubhouse_hooks(settings: dict[str, Any]) -> dict[str, Any]:
    """Remove machine-injected hook entries, keeping every other key intact.

    Emptied event lists are dropped, and so is an emptied ``hooks`` key.
    """
    result = copy.deepcopy(settings)
    hooks = result.get("hooks")
    if not isinstance(hooks, dict):
        return result

    cleaned: dict[str, Any] = {}
    for event, entries in hooks.items():
        if not isinstance(entries, list):
            cleaned[event] = entries
            continue
        kept = [e for e in (_strip_entry(entry) for entry in entries) if e is not None]
        if kept:
            cleaned[event] = kept

    if cleaned:
        result["hooks"] = cleaned
    else:
        del result["hooks"]
    return result


def merge_hook_entries(
    settings: dict[str, Any], hooks: dict[str, list[dict[str, Any]]]
) -> dict[str, Any]:
    """Replace previously injected entries with ``hooks``, keeping user entries.

    User entries for an event come first; the machine entries are appended
    after them.
    """
    merged = strip_clubhouse_hooks(settings)
    existing = merged.get("hooks")
    events: dict[str, Any] = dict(existing) if isinstance(existing, dict) else {}

    for event, entries in hooks.items():
        current = events.get(event)
        current_list = list(current) if isinstance(current, list) else []
        events[event] = current_list + copy.deepcopy(entries)

    merged["hooks"] = events
    return merged
