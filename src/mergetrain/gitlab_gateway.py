from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import cast
from urllib.parse import quote

import requests

from mergetrain.config import GitLabConfig
from mergetrain.models import Commit, MergeRequestState, MergeRequestSummary, PipelineStatus
from mergetrain.observability import log_event, log_warning_event


LOGGER = logging.getLogger("mergetrain.gitlab_gateway")
_PER_PAGE = "100"
_RUNNING_PIPELINE_STATUSES = frozenset(
    {"created", "waiting_for_resource", "preparing", "pending", "running", "scheduled"}
)
_FAILED_PIPELINE_STATUSES = frozenset({"failed", "canceled"})


class GitLabApiError(RuntimeError):
    """GitLab call failed or returned an unusable payload; the pass should be abandoned."""


@dataclass(frozen=True)
class GitLabGateway:
    config: GitLabConfig
    timeout_seconds: float = 30
    session: requests.Session = field(default_factory=requests.Session, repr=False, compare=False)

    def list_open_merge_requests(self, target_branch: str) -> list[MergeRequestSummary]:
        payload = self._api_list(
            "/merge_requests",
            params={
                "scope": "all",
                "state": "opened",
                "wip": "no",
                "target_branch": target_branch,
                "order_by": "created_at",
                "sort": "asc",
            },
        )
        mrs: list[MergeRequestSummary] = []
        for item in payload:
            item_obj = _require_object(item, what="merge request")
            mrs.append(
                MergeRequestSummary(
                    iid=_as_int(item_obj.get("iid"), field="iid"),
                    title=_as_string(item_obj.get("title")),
                    description=_as_string(item_obj.get("description")),
                    cannot_be_merged=_as_string(item_obj.get("merge_status")) == "cannot_be_merged",
                    web_url=_as_string(item_obj.get("web_url")),
                    created_at=_as_string(item_obj.get("created_at")),
                )
            )
        log_event(
            LOGGER,
            "gitlab_read",
            endpoint="merge_requests",
            target_branch=target_branch,
            count=len(mrs),
        )
        return mrs

    def get_merge_request(self, iid: int) -> MergeRequestState:
        payload = self._api_json(
            "GET",
            f"/merge_requests/{iid}",
            params={
                "include_diverged_commits_count": "true",
                "include_rebase_in_progress": "true",
            },
        )
        payload_obj = _require_object(payload, what="merge request")

        pipeline_obj = _as_object_dict(payload_obj.get("head_pipeline"))
        if pipeline_obj is None:
            pipeline_obj = _as_object_dict(payload_obj.get("pipeline"))
        raw_status: str | None = None
        if pipeline_obj is not None:
            raw_status = _as_string(pipeline_obj.get("status")).strip().lower() or None

        state = MergeRequestState(
            iid=_as_int(payload_obj.get("iid"), field="iid"),
            pipeline_status=pipeline_status_from_gitlab(
                raw_status, has_pipeline=pipeline_obj is not None
            ),
            pipeline_raw_status=raw_status,
            diverged_commits_count=_as_optional_int(
                payload_obj.get("diverged_commits_count"), field="diverged_commits_count"
            )
            or 0,
            rebase_in_progress=_as_bool(
                payload_obj.get("rebase_in_progress"), field="rebase_in_progress"
            ),
        )
        log_event(
            LOGGER,
            "gitlab_read",
            endpoint="merge_request",
            mr_iid=state.iid,
            pipeline_status=raw_status,
            diverged_commits_count=state.diverged_commits_count,
            rebase_in_progress=state.rebase_in_progress,
        )
        return state

    def is_approved(self, iid: int) -> bool:
        payload = self._api_json("GET", f"/merge_requests/{iid}/approvals")
        payload_obj = _require_object(payload, what="approvals")
        approved = payload_obj.get("approved")
        if not isinstance(approved, bool):
            raise GitLabApiError("Unexpected GitLab response: approvals missing 'approved' flag")
        log_event(LOGGER, "gitlab_read", endpoint="approvals", mr_iid=iid, approved=approved)
        return approved

    def list_commits(self, iid: int) -> list[Commit]:
        payload = self._api_list(f"/merge_requests/{iid}/commits", params={})
        commits: list[Commit] = []
        for item in payload:
            item_obj = _require_object(item, what="commit")
            commits.append(
                Commit(
                    sha=_as_string(item_obj.get("id")),
                    title=_as_string(item_obj.get("title")),
                )
            )
        log_event(LOGGER, "gitlab_read", endpoint="commits", mr_iid=iid, count=len(commits))
        return commits

    def rebase(self, iid: int) -> None:
        self._api_json("PUT", f"/merge_requests/{iid}/rebase")
        log_event(LOGGER, "merge_request_rebased", mr_iid=iid)

    def merge(self, iid: int) -> None:
        self._api_json("PUT", f"/merge_requests/{iid}/merge")
        log_event(LOGGER, "merge_request_merged", mr_iid=iid)

    def _project_path(self) -> str:
        return f"{self.config.api_root}/projects/{quote(self.config.project_id, safe='')}"

    def _request(
        self, method: str, path: str, params: dict[str, str] | None = None
    ) -> requests.Response:
        url = f"{self._project_path()}{path}"
        try:
            response = self.session.request(
                method,
                url,
                headers={"PRIVATE-TOKEN": self.config.token},
                params=params,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            log_warning_event(
                LOGGER,
                "gitlab_request_failed",
                method=method,
                path=path,
                error_type=type(exc).__name__,
            )
            raise GitLabApiError(f"GitLab {method} {path} failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            log_warning_event(
                LOGGER,
                "gitlab_request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text,
            )
            raise GitLabApiError(
                f"GitLab {method} {path} returned status {response.status_code}: "
                f"{response.text.strip() or '<empty>'}"
            )
        return response

    def _api_json(self, method: str, path: str, params: dict[str, str] | None = None) -> object:
        response = self._request(method, path, params=params)
        return _decode_json(response, path=path)

    def _api_list(self, path: str, params: dict[str, str]) -> list[object]:
        items: list[object] = []
        page = "1"
        while page:
            response = self._request(
                "GET", path, params={**params, "per_page": _PER_PAGE, "page": page}
            )
            payload = _decode_json(response, path=path)
            if not isinstance(payload, list):
                raise GitLabApiError(f"Unexpected GitLab response: expected list for {path}")
            items.extend(payload)
            next_page = response.headers.get("X-Next-Page", "").strip()
            if next_page == page:
                raise GitLabApiError(f"GitLab pagination did not advance for {path}")
            page = next_page
        return items


def pipeline_status_from_gitlab(raw_status: str | None, *, has_pipeline: bool) -> PipelineStatus:
    if not has_pipeline:
        return "absent"
    if raw_status == "success":
        return "success"
    if raw_status in _FAILED_PIPELINE_STATUSES:
        return "failed"
    if raw_status in _RUNNING_PIPELINE_STATUSES:
        return "running"
    return "other"


def _decode_json(response: requests.Response, *, path: str) -> object:
    if not response.content:
        return None
    try:
        return cast(object, response.json())
    except ValueError as exc:
        raise GitLabApiError(f"Unexpected GitLab response: invalid JSON for {path}") from exc


def _require_object(value: object, *, what: str) -> dict[str, object]:
    obj = _as_object_dict(value)
    if obj is None:
        raise GitLabApiError(f"Unexpected GitLab response: expected object for {what}")
    return obj


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitLabApiError(f"Unexpected GitLab response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitLabApiError(f"Unexpected GitLab response value for {field}: {value}") from exc
    raise GitLabApiError(f"Unexpected GitLab response type for {field}")


def _as_optional_int(value: object, *, field: str) -> int | None:
    if value is None:
        return None
    return _as_int(value, field=field)


def _as_bool(value: object, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    raise GitLabApiError(f"Unexpected GitLab response type for {field}")
