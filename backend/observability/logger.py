"""
JSONL event logger.

- Write one JSON object per line (or one key=value line when JSON output is off)
- Output to stdout
- No buffering, no batching
- Long string fields (base64 audio, image data URLs) are truncated
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
from typing import Any, Mapping, Callable

from constants import LOG_STRING_FIELD_MAX_CHARS


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

# Set from AppConfig.enable_json_logs (ENABLE_JSON_LOGS)
_json_output: bool = True


def configure(*, json_output: bool) -> None:
    """Select JSON or plain-text lines for every following log_event()."""
    global _json_output  # pylint: disable=global-statement
    _json_output = json_output


def _truncate(value: Any) -> Any:
    if isinstance(value, str) and len(value) > LOG_STRING_FIELD_MAX_CHARS:
        return value[:LOG_STRING_FIELD_MAX_CHARS] + f"...(+{len(value) - LOG_STRING_FIELD_MAX_CHARS})"
    if isinstance(value, Mapping):
        return {k: _truncate(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_truncate(v) for v in value]
    return value


def _format_text(event: Mapping[str, Any]) -> str:
    fields = " ".join(f"{k}={v}" for k, v in event.items() if k != "event_type")
    return f"{event.get('event_type', 'EVENT')} {fields}".rstrip()


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller is responsible for supplying a fully-formed event dict
    (ts_ms, session_id, connection_state, ...).

    This function:
    - Truncates oversized string values
    - Serializes to JSON
    - Writes exactly one line
    - Never raises
    """
    if not _json_output:
        _print(_format_text(_truncate(event)))
        return

    try:
        line = json.dumps(_truncate(event), ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Logging must never crash the session
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event)[:LOG_STRING_FIELD_MAX_CHARS],
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
