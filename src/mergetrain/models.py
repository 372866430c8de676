from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


PipelineStatus = Literal["absent", "running", "success", "failed", "other"]
MergeAction = Literal["skip", "rebase", "wait", "merge", "none"]
NoPipelinePolicy = Literal["skip", "stop"]


@dataclass(frozen=True)
class MergeRequestSummary:
    iid: int
    title: str
    description: str
    cannot_be_merged: bool
    web_url: str
    created_at: str


@dataclass(frozen=True)
class MergeRequestState:
    iid: int
    pipeline_status: PipelineStatus
    pipeline_raw_status: str | None
    diverged_commits_count: int
    rebase_in_progress: bool

    @property
    def needs_rebase(self) -> bool:
        return self.diverged_commits_count > 0 and not self.rebase_in_progress


@dataclass(frozen=True)
class Commit:
    sha: str
    title: str


@dataclass(frozen=True)
class Ticket:
    key: str
    status: str
    summary: str
    fix_versions: tuple[str, ...] = ()


@dataclass(frozen=True)
class TicketQuery:
    project_id: str
    ticket_ids: tuple[str, ...]
    statuses: tuple[str, ...] = ()
    release_field: str | None = None
    release_name: str | None = None
    allow_empty_release_field: bool = False


@dataclass(frozen=True)
class Decision:
    iid: int
    action: MergeAction
    reason: str
    stops_pass: bool = False


@dataclass(frozen=True)
class PassResult:
    candidates: tuple[int, ...]
    decisions: tuple[Decision, ...]
    stopped_early_at: int | None = None

    def action_for(self, iid: int) -> MergeAction | None:
        for decision in self.decisions:
            if decision.iid == iid:
                return decision.action
        return None
