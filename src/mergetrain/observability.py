from __future__ import annotations

import json
import logging
import sys
from typing import Final, Literal, cast


_LOGGER_NAME: Final[str] = "mergetrain"
_MAX_VALUE_LEN: Final[int] = 120
_VERBOSE_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"
_QUIET_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(message)s"

# Pass lifecycle as seen by an operator tailing the service.
_PASS_EVENTS: Final[frozenset[str]] = frozenset(
    {"pass_completed", "pass_failed", "pass_skipped_overlap", "pass_ticks_skipped"}
)
# Anything that changed (or would have changed) a merge request on GitLab.
_TRAIN_ACTION_EVENTS: Final[frozenset[str]] = frozenset(
    {"merge_request_rebased", "merge_request_merged", "merge_train_action_suppressed"}
)
_GATEWAY_FAILURE_EVENTS: Final[frozenset[str]] = frozenset(
    {"gitlab_request_failed", "jira_request_failed"}
)
_LOW_VERBOSITY_EVENTS: Final[frozenset[str]] = (
    _PASS_EVENTS | _TRAIN_ACTION_EVENTS | _GATEWAY_FAILURE_EVENTS
)

_SECRET_FIELDS: Final[frozenset[str]] = frozenset(
    {"token", "private_token", "auth", "authorization"}
)


VerboseMode = Literal["low", "high"]


def configure_logging(verbose: bool | str | None) -> None:
    """Route ``mergetrain`` events to stderr.

    Without a verbose mode only warnings are printed, so a failed pass or a
    rejected GitLab/Jira request is always visible. ``low`` adds the pass
    lifecycle and merge-train actions; ``high`` prints every event.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.propagate = False
    logger.handlers.clear()
    mode = _normalize_verbose_mode(verbose)

    stream_handler = logging.StreamHandler(sys.stderr)
    if mode is None:
        stream_handler.setFormatter(logging.Formatter(_QUIET_FORMAT))
        stream_handler.setLevel(logging.WARNING)
        logger.addHandler(stream_handler)
        logger.setLevel(logging.WARNING)
        return

    stream_handler.setFormatter(logging.Formatter(_VERBOSE_FORMAT))
    if mode == "low":
        stream_handler.addFilter(_LowVerbosityFilter())
    logger.addHandler(stream_handler)
    logger.setLevel(logging.INFO)


def log_event(logger: logging.Logger, event: str, **fields: object) -> None:
    logger.info(_build_event_message(event=event, fields=fields))


def log_warning_event(logger: logging.Logger, event: str, **fields: object) -> None:
    logger.warning(_build_event_message(event=event, fields=fields))


def _build_event_message(*, event: str, fields: dict[str, object]) -> str:
    parts = [f"event={_normalize_field_value(event)}"]
    for key in sorted(fields.keys()):
        if key.lower() in _SECRET_FIELDS:
            parts.append(f"{key}=<redacted>")
            continue
        parts.append(f"{key}={_normalize_field_value(fields[key])}")
    return " ".join(parts)


def _normalize_field_value(value: object) -> str:
    if value is None:
        normalized = "null"
    elif isinstance(value, bool):
        normalized = "true" if value else "false"
    elif isinstance(value, int | float):
        normalized = str(value)
    elif isinstance(value, str):
        normalized = _collapse(value)
    elif isinstance(value, tuple | list):
        # Ticket ids and MR iids; commas keep the field a single token.
        normalized = ",".join(_normalize_field_value(item) for item in value) or "<empty>"
    else:
        normalized = f"<{type(value).__name__}>"

    if any(ch.isspace() for ch in normalized) or "=" in normalized:
        return json.dumps(normalized)
    return normalized


def _collapse(value: str) -> str:
    collapsed = " ".join(value.split())
    if len(collapsed) > _MAX_VALUE_LEN:
        collapsed = f"{collapsed[:_MAX_VALUE_LEN]}..."
    return collapsed or "<empty>"


def _normalize_verbose_mode(verbose: bool | str | None) -> VerboseMode | None:
    if verbose is None:
        return None
    if isinstance(verbose, bool):
        return "high" if verbose else None
    normalized = verbose.strip().lower()
    if normalized in {"low", "high"}:
        return cast(VerboseMode, normalized)
    raise ValueError(f"Unsupported verbose mode: {verbose!r}")


def _extract_event_name(message: str) -> str | None:
    if not message.startswith("event="):
        return None
    first_field = message.split(" ", 1)[0]
    if first_field == "event=":
        return None
    return first_field[len("event=") :]


class _LowVerbosityFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return _extract_event_name(record.getMessage()) in _LOW_VERBOSITY_EVENTS
