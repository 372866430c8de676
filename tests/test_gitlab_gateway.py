from __future__ import annotations

import json
from typing import Any

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from mergetrain.config import GitLabConfig
from mergetrain.gitlab_gateway import GitLabApiError, GitLabGateway, pipeline_status_from_gitlab


class FakeResponse:
    def __init__(
        self, status_code: int = 200, payload: object = None, headers: dict[str, str] | None = None
    ) -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.text = self.content.decode("utf-8")

    def json(self) -> object:
        return json.loads(self.text)


class FakeSession:
    def __init__(self, responses: list[FakeResponse | Exception]) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _gateway(session: FakeSession, *, project_id: str = "42") -> GitLabGateway:
    config = GitLabConfig(
        base_url="https://gitlab.example.com/api/v4/",
        token="glpat-secret",
        project_id=project_id,
        target_branch="release",
    )
    return GitLabGateway(config, timeout_seconds=7, session=session)  # type: ignore[arg-type]


def test_list_open_merge_requests_parses_and_follows_pagination() -> None:
    session = FakeSession(
        [
            FakeResponse(
                payload=[
                    {
                        "iid": 3,
                        "title": "First",
                        "description": "desc",
                        "merge_status": "can_be_merged",
                        "web_url": "https://gitlab.example.com/mr/3",
                        "created_at": "2024-01-01T00:00:00Z",
                    }
                ],
                headers={"X-Next-Page": "2"},
            ),
            FakeResponse(
                payload=[
                    {
                        "iid": "4",
                        "title": "Second",
                        "description": None,
                        "merge_status": "cannot_be_merged",
                    }
                ],
                headers={"X-Next-Page": ""},
            ),
        ]
    )

    mrs = _gateway(session).list_open_merge_requests("release")

    assert [mr.iid for mr in mrs] == [3, 4]
    assert mrs[0].cannot_be_merged is False
    assert mrs[1].cannot_be_merged is True
    assert mrs[1].description == ""
    first = session.requests[0]
    assert first["method"] == "GET"
    assert first["url"] == "https://gitlab.example.com/api/v4/projects/42/merge_requests"
    assert first["headers"] == {"PRIVATE-TOKEN": "glpat-secret"}
    assert first["timeout"] == 7
    assert first["params"]["state"] == "opened"
    assert first["params"]["wip"] == "no"
    assert first["params"]["target_branch"] == "release"
    assert first["params"]["order_by"] == "created_at"
    assert first["params"]["sort"] == "asc"
    assert first["params"]["page"] == "1"
    assert session.requests[1]["params"]["page"] == "2"


def test_project_path_ids_are_url_encoded() -> None:
    session = FakeSession([FakeResponse(payload=[])])

    _gateway(session, project_id="group/app").list_open_merge_requests("release")

    assert session.requests[0]["url"].endswith("/projects/group%2Fapp/merge_requests")


def test_get_merge_request_reads_head_pipeline_and_rebase_fields() -> None:
    session = FakeSession(
        [
            FakeResponse(
                payload={
                    "iid": 6,
                    "head_pipeline": {"status": "pending"},
                    "pipeline": {"status": "success"},
                    "diverged_commits_count": 3,
                    "rebase_in_progress": False,
                }
            )
        ]
    )

    state = _gateway(session).get_merge_request(6)

    assert state.iid == 6
    assert state.pipeline_status == "running"
    assert state.pipeline_raw_status == "pending"
    assert state.needs_rebase is True
    params = session.requests[0]["params"]
    assert params == {
        "include_diverged_commits_count": "true",
        "include_rebase_in_progress": "true",
    }


def test_get_merge_request_falls_back_to_legacy_pipeline_and_absent() -> None:
    session = FakeSession(
        [
            FakeResponse(
                payload={
                    "iid": 1,
                    "pipeline": {"status": "failed"},
                    "diverged_commits_count": None,
                    "rebase_in_progress": False,
                }
            ),
            FakeResponse(
                payload={
                    "iid": 2,
                    "head_pipeline": None,
                    "diverged_commits_count": 0,
                    "rebase_in_progress": True,
                }
            ),
        ]
    )
    gateway = _gateway(session)

    legacy = gateway.get_merge_request(1)
    absent = gateway.get_merge_request(2)

    assert legacy.pipeline_status == "failed"
    assert legacy.diverged_commits_count == 0
    assert absent.pipeline_status == "absent"
    assert absent.pipeline_raw_status is None


def test_get_merge_request_rejects_missing_rebase_flag() -> None:
    session = FakeSession([FakeResponse(payload={"iid": 1, "diverged_commits_count": 1})])

    with pytest.raises(GitLabApiError, match="rebase_in_progress"):
        _gateway(session).get_merge_request(1)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("success", "success"),
        ("failed", "failed"),
        ("canceled", "failed"),
        ("running", "running"),
        ("pending", "running"),
        ("created", "running"),
        ("skipped", "other"),
        ("manual", "other"),
        (None, "other"),
    ],
)
def test_pipeline_status_mapping(raw: str | None, expected: str) -> None:
    assert pipeline_status_from_gitlab(raw, has_pipeline=True) == expected


def test_pipeline_status_without_pipeline_is_absent() -> None:
    assert pipeline_status_from_gitlab(None, has_pipeline=False) == "absent"


def test_is_approved_reads_flag() -> None:
    session = FakeSession([FakeResponse(payload={"approved": True}), FakeResponse(payload={})])
    gateway = _gateway(session)

    assert gateway.is_approved(5) is True
    assert session.requests[0]["url"].endswith("/merge_requests/5/approvals")
    with pytest.raises(GitLabApiError, match="approved"):
        gateway.is_approved(5)


def test_list_commits_parses_titles() -> None:
    session = FakeSession(
        [FakeResponse(payload=[{"id": "abc", "title": "REL-1 fix"}, {"id": "def", "title": "x"}])]
    )

    commits = _gateway(session).list_commits(9)

    assert [(c.sha, c.title) for c in commits] == [("abc", "REL-1 fix"), ("def", "x")]
    assert session.requests[0]["url"].endswith("/merge_requests/9/commits")


def test_rebase_and_merge_use_put() -> None:
    session = FakeSession(
        [FakeResponse(status_code=202, payload={"rebase_in_progress": True}), FakeResponse()]
    )
    gateway = _gateway(session)

    gateway.rebase(6)
    gateway.merge(5)

    assert [(r["method"], r["url"].rsplit("/", 2)[-2:]) for r in session.requests] == [
        ("PUT", ["6", "rebase"]),
        ("PUT", ["5", "merge"]),
    ]


def test_http_error_status_raises_gateway_error() -> None:
    session = FakeSession([FakeResponse(status_code=405, payload={"message": "Method Not Allowed"})])

    with pytest.raises(GitLabApiError, match="status 405"):
        _gateway(session).merge(5)


def test_transport_error_is_wrapped() -> None:
    session = FakeSession([requests.ConnectionError("refused")])

    with pytest.raises(GitLabApiError, match="refused") as excinfo:
        _gateway(session).get_merge_request(1)

    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)


def test_list_endpoint_rejects_non_list_payload() -> None:
    session = FakeSession([FakeResponse(payload={"message": "oops"})])

    with pytest.raises(GitLabApiError, match="expected list"):
        _gateway(session).list_commits(1)


def test_pagination_that_does_not_advance_is_rejected() -> None:
    session = FakeSession([FakeResponse(payload=[], headers={"X-Next-Page": "1"})])

    with pytest.raises(GitLabApiError, match="did not advance"):
        _gateway(session).list_commits(1)
