from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from mergetrain.models import Commit, MergeRequestSummary, Ticket
from mergetrain.observability import log_event
from mergetrain.tickets import TicketMatcher


LOGGER = logging.getLogger("mergetrain.release_filter")


def is_candidate(
    mr: MergeRequestSummary,
    eligible: Mapping[str, Ticket],
    *,
    matcher: TicketMatcher,
    allowed_statuses: Sequence[str] = (),
) -> bool:
    return exclusion_reason(mr, eligible, matcher=matcher, allowed_statuses=allowed_statuses) is None


def exclusion_reason(
    mr: MergeRequestSummary,
    eligible: Mapping[str, Ticket],
    *,
    matcher: TicketMatcher,
    allowed_statuses: Sequence[str] = (),
) -> str | None:
    references = matcher.extract(mr.description)
    if not references:
        return "no_ticket_reference"
    for ticket_id in references:
        ticket = eligible.get(ticket_id)
        if ticket is None:
            return "ticket_not_eligible"
        if allowed_statuses and ticket.status not in allowed_statuses:
            return "ticket_status_not_allowed"
    return None


def filter_candidates(
    mrs: Iterable[MergeRequestSummary],
    eligible: Mapping[str, Ticket],
    *,
    matcher: TicketMatcher,
    allowed_statuses: Sequence[str] = (),
) -> list[MergeRequestSummary]:
    candidates: list[MergeRequestSummary] = []
    for mr in mrs:
        reason = exclusion_reason(
            mr, eligible, matcher=matcher, allowed_statuses=allowed_statuses
        )
        if reason is not None:
            log_event(
                LOGGER,
                "merge_request_excluded",
                mr_iid=mr.iid,
                reason=reason,
                ticket_ids=matcher.extract(mr.description),
            )
            continue
        candidates.append(mr)
    return candidates


def commits_match_description(
    mr: MergeRequestSummary,
    commits: Iterable[Commit],
    *,
    matcher: TicketMatcher,
) -> bool:
    """Every commit title must name a ticket that the MR description links."""
    described = frozenset(matcher.extract(mr.description))
    for commit in commits:
        ticket_id = matcher.first_in_title(commit.title)
        if ticket_id is None or ticket_id not in described:
            log_event(
                LOGGER,
                "commit_ticket_mismatch",
                mr_iid=mr.iid,
                commit_sha=commit.sha,
                commit_ticket_id=ticket_id,
            )
            return False
    return True
