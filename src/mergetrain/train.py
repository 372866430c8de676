from __future__ import annotations

import logging

from mergetrain.config import AppConfig
from mergetrain.decision import commit_mismatch_decision, decide_merge_action
from mergetrain.gitlab_gateway import GitLabGateway
from mergetrain.jira_gateway import JiraGateway, release_query
from mergetrain.models import Decision, MergeRequestSummary, PassResult
from mergetrain.observability import log_event
from mergetrain.release_filter import commits_match_description, filter_candidates
from mergetrain.tickets import TicketMatcher


LOGGER = logging.getLogger("mergetrain.train")


class MergeTrain:
    """Runs one reconciliation pass over the open merge requests of a release branch.

    Candidates are evaluated strictly in creation order. Merges let the pass
    continue with the next candidate; a rebase or a pending pipeline ends the
    pass so the next one starts from fresh GitLab state.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        gitlab: GitLabGateway,
        jira: JiraGateway,
        matcher: TicketMatcher | None = None,
    ) -> None:
        self._config = config
        self._gitlab = gitlab
        self._jira = jira
        self._matcher = matcher or TicketMatcher(
            project_id=config.jira.project_id, browse_url=config.jira.browse_url
        )

    def run_pass(self) -> PassResult:
        target_branch = self._config.gitlab.target_branch
        mrs = self._gitlab.list_open_merge_requests(target_branch)
        log_event(LOGGER, "merge_requests_fetched", target_branch=target_branch, count=len(mrs))

        ticket_ids = self._matcher.extract_all(mr.description for mr in mrs)
        if not ticket_ids:
            log_event(LOGGER, "pass_no_ticket_references", mr_count=len(mrs))
            return PassResult(candidates=(), decisions=())

        tickets = self._jira.search_tickets(release_query(self._config.jira, ticket_ids))
        eligible = {ticket.key: ticket for ticket in tickets}
        log_event(
            LOGGER,
            "eligible_tickets_loaded",
            referenced_count=len(ticket_ids),
            eligible_count=len(eligible),
        )

        candidates = tuple(
            filter_candidates(
                mrs,
                eligible,
                matcher=self._matcher,
                allowed_statuses=self._config.jira.statuses,
            )
        )
        log_event(
            LOGGER,
            "merge_train_candidates",
            candidate_iids=tuple(mr.iid for mr in candidates),
        )

        decisions: list[Decision] = []
        for mr in candidates:
            decision = self._evaluate(mr)
            decisions.append(decision)
            self._execute(decision)
            if decision.stops_pass:
                log_event(
                    LOGGER,
                    "pass_stopped",
                    mr_iid=mr.iid,
                    action=decision.action,
                    reason=decision.reason,
                )
                return PassResult(
                    candidates=tuple(c.iid for c in candidates),
                    decisions=tuple(decisions),
                    stopped_early_at=mr.iid,
                )

        return PassResult(
            candidates=tuple(c.iid for c in candidates),
            decisions=tuple(decisions),
        )

    def _evaluate(self, mr: MergeRequestSummary) -> Decision:
        log_event(LOGGER, "merge_request_evaluating", mr_iid=mr.iid, title=mr.title)
        if self._config.train.require_commit_consistency:
            commits = self._gitlab.list_commits(mr.iid)
            if not commits_match_description(mr, commits, matcher=self._matcher):
                return commit_mismatch_decision(mr)

        return decide_merge_action(
            mr,
            lambda: self._gitlab.get_merge_request(mr.iid),
            is_approved=lambda: self._gitlab.is_approved(mr.iid),
            no_pipeline_policy=self._config.train.no_pipeline_policy,
        )

    def _execute(self, decision: Decision) -> None:
        log_event(
            LOGGER,
            "merge_request_decided",
            mr_iid=decision.iid,
            action=decision.action,
            reason=decision.reason,
        )
        if decision.action not in {"rebase", "merge"}:
            return
        if not self._config.runtime.enable_merge_operations:
            log_event(
                LOGGER,
                "merge_train_action_suppressed",
                mr_iid=decision.iid,
                action=decision.action,
            )
            return
        if decision.action == "rebase":
            self._gitlab.rebase(decision.iid)
        else:
            self._gitlab.merge(decision.iid)
