from __future__ import annotations

from typing import Callable

from mergetrain.models import Decision, MergeRequestState, MergeRequestSummary, NoPipelinePolicy


def decide_merge_action(
    mr: MergeRequestSummary,
    load_state: Callable[[], MergeRequestState],
    *,
    is_approved: Callable[[], bool],
    no_pipeline_policy: NoPipelinePolicy = "skip",
) -> Decision:
    """Pick the single next step for one merge request.

    Checks run in a fixed priority order and the first match wins. The
    merge request detail and the approval lookup are remote calls, so each is
    only made once the gates ahead of it have passed. A conflicted merge
    request is skipped without touching GitLab at all.
    """
    iid = mr.iid
    if mr.cannot_be_merged:
        return Decision(iid=iid, action="skip", reason="cannot_be_merged")
    state = load_state()
    if state.pipeline_status == "absent":
        if no_pipeline_policy == "stop":
            return Decision(iid=iid, action="wait", reason="no_pipeline", stops_pass=True)
        return Decision(iid=iid, action="skip", reason="no_pipeline")
    if state.pipeline_status == "failed":
        return Decision(iid=iid, action="skip", reason="pipeline_failed")
    if not is_approved():
        return Decision(iid=iid, action="skip", reason="not_approved")
    if state.needs_rebase:
        return Decision(iid=iid, action="rebase", reason="needs_rebase", stops_pass=True)
    if state.pipeline_status == "running":
        return Decision(iid=iid, action="wait", reason="pipeline_running", stops_pass=True)
    if state.pipeline_status == "success":
        return Decision(iid=iid, action="merge", reason="pipeline_succeeded")
    return Decision(iid=iid, action="none", reason="pipeline_status_unhandled")


def commit_mismatch_decision(mr: MergeRequestSummary) -> Decision:
    return Decision(iid=mr.iid, action="skip", reason="commits_do_not_match_description")
