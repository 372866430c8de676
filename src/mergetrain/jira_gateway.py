from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import cast

import requests

from mergetrain.config import JiraConfig
from mergetrain.models import Ticket, TicketQuery
from mergetrain.observability import log_event, log_warning_event


LOGGER = logging.getLogger("mergetrain.jira_gateway")
_PAGE_SIZE = 500
_SEARCH_FIELDS = ("summary", "status", "fixVersions")


class JiraApiError(RuntimeError):
    """Jira search failed or returned an unusable payload; the pass should be abandoned."""


def build_jql(query: TicketQuery) -> str:
    if query.statuses:
        status_filter = f"status in ({', '.join(_quote(status) for status in query.statuses)})"
    else:
        status_filter = "status is not EMPTY"

    clauses = [f"project={_quote(query.project_id)}", status_filter]
    if query.release_field:
        field_name = _quote(query.release_field)
        release_match = f"{field_name}={_quote(query.release_name or '')}"
        if query.allow_empty_release_field:
            clauses.append(f"({field_name} is EMPTY OR {release_match})")
        else:
            clauses.append(f"({release_match})")
    clauses.append(f"id in ({','.join(query.ticket_ids)})")
    return " AND ".join(clauses)


def release_query(config: JiraConfig, ticket_ids: tuple[str, ...]) -> TicketQuery:
    return TicketQuery(
        project_id=config.project_id,
        ticket_ids=ticket_ids,
        statuses=config.statuses,
        release_field=config.release_field,
        release_name=config.release_name,
        allow_empty_release_field=config.allow_empty_release_field,
    )


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


@dataclass(frozen=True)
class JiraGateway:
    config: JiraConfig
    timeout_seconds: float = 30
    session: requests.Session = field(default_factory=requests.Session, repr=False, compare=False)

    def search_tickets(self, query: TicketQuery) -> list[Ticket]:
        if not query.ticket_ids:
            log_event(LOGGER, "jira_search_skipped", reason="no_ticket_ids")
            return []

        jql = build_jql(query)
        tickets: list[Ticket] = []
        start_at = 0
        while True:
            payload = self._search_page(jql, start_at=start_at)
            issues = payload.get("issues")
            if not isinstance(issues, list):
                raise JiraApiError("Unexpected Jira response: expected issues list")
            for item in issues:
                tickets.append(_parse_ticket(item))

            total = payload.get("total")
            start_at += len(issues)
            if not issues or not isinstance(total, int) or start_at >= total:
                break

        log_event(
            LOGGER,
            "jira_read",
            endpoint="search",
            requested_count=len(query.ticket_ids),
            count=len(tickets),
        )
        return tickets

    def _search_page(self, jql: str, *, start_at: int) -> dict[str, object]:
        url = f"{self.config.api_root}/search"
        body = {
            "jql": jql,
            "startAt": start_at,
            "maxResults": _PAGE_SIZE,
            "fields": list(_SEARCH_FIELDS),
        }
        try:
            response = self.session.request(
                "POST",
                url,
                headers={
                    "Authorization": f"Basic {self.config.auth}",
                    "Content-Type": "application/json",
                },
                json=body,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            log_warning_event(
                LOGGER, "jira_request_failed", endpoint="search", error_type=type(exc).__name__
            )
            raise JiraApiError(f"Jira search failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            log_warning_event(
                LOGGER,
                "jira_request_failed",
                endpoint="search",
                status_code=response.status_code,
                body=response.text,
            )
            raise JiraApiError(
                f"Jira search returned status {response.status_code}: "
                f"{response.text.strip() or '<empty>'}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise JiraApiError("Unexpected Jira response: invalid JSON") from exc
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise JiraApiError("Unexpected Jira response: expected object for search")
        return payload_obj


def _parse_ticket(item: object) -> Ticket:
    item_obj = _as_object_dict(item)
    if item_obj is None:
        raise JiraApiError("Unexpected Jira response: expected object for issue")
    key = item_obj.get("key")
    if not isinstance(key, str) or not key:
        raise JiraApiError("Unexpected Jira response: issue without key")
    fields = _as_object_dict(item_obj.get("fields")) or {}
    status_obj = _as_object_dict(fields.get("status")) or {}
    status_name = status_obj.get("name")

    fix_versions: list[str] = []
    raw_versions = fields.get("fixVersions")
    if isinstance(raw_versions, list):
        for entry in raw_versions:
            entry_obj = _as_object_dict(entry)
            if entry_obj is None:
                continue
            name = entry_obj.get("name")
            if isinstance(name, str):
                fix_versions.append(name)

    summary = fields.get("summary")
    return Ticket(
        key=key,
        status=status_name if isinstance(status_name, str) else "",
        summary=summary if isinstance(summary, str) else "",
        fix_versions=tuple(fix_versions),
    )


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)
