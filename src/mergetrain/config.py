from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import tomllib
from typing import Mapping, cast

from mergetrain.models import NoPipelinePolicy


@dataclass(frozen=True)
class RuntimeConfig:
    poll_interval_seconds: int = 60
    request_timeout_seconds: int = 30
    enable_merge_operations: bool = False


@dataclass(frozen=True)
class GitLabConfig:
    base_url: str
    token: str
    project_id: str
    target_branch: str

    @property
    def api_root(self) -> str:
        return self.base_url.rstrip("/")


@dataclass(frozen=True)
class JiraConfig:
    base_url: str
    browse_url: str
    auth: str
    project_id: str
    release_name: str
    release_field: str | None = None
    statuses: tuple[str, ...] = ()
    allow_empty_release_field: bool = False

    @property
    def api_root(self) -> str:
        return self.base_url.rstrip("/")


@dataclass(frozen=True)
class TrainConfig:
    no_pipeline_policy: NoPipelinePolicy = "skip"
    require_commit_consistency: bool = True


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    gitlab: GitLabConfig
    jira: JiraConfig
    train: TrainConfig = TrainConfig()


class ConfigError(ValueError):
    pass


def load_config(path: Path, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    env = os.environ if environ is None else environ

    runtime_data = _optional_table(data, "runtime") or {}
    gitlab_data = _require_table(data, "gitlab")
    jira_data = _require_table(data, "jira")
    train_data = _optional_table(data, "train") or {}

    runtime = RuntimeConfig(
        poll_interval_seconds=_int_with_default(runtime_data, "poll_interval_seconds", 60),
        request_timeout_seconds=_int_with_default(runtime_data, "request_timeout_seconds", 30),
        enable_merge_operations=_bool_with_default(
            runtime_data, "enable_merge_operations", False
        ),
    )
    if runtime.poll_interval_seconds < 5:
        raise ConfigError("runtime.poll_interval_seconds must be >= 5")
    if runtime.request_timeout_seconds < 1:
        raise ConfigError("runtime.request_timeout_seconds must be >= 1")

    gitlab = GitLabConfig(
        base_url=_require_str(gitlab_data, "base_url"),
        token=_require_secret(gitlab_data, "token", env=env),
        project_id=_require_str_or_int(gitlab_data, "project_id"),
        target_branch=_require_str(gitlab_data, "target_branch"),
    )

    jira = JiraConfig(
        base_url=_require_str(jira_data, "base_url"),
        browse_url=_require_str(jira_data, "browse_url"),
        auth=_require_secret(jira_data, "auth", env=env),
        project_id=_require_str(jira_data, "project_id"),
        release_name=_require_str(jira_data, "release_name"),
        release_field=_optional_str(jira_data, "release_field"),
        statuses=_statuses_with_default(jira_data, "statuses"),
        allow_empty_release_field=_bool_with_default(
            jira_data, "allow_empty_release_field", False
        ),
    )
    if jira.allow_empty_release_field and jira.release_field is None:
        raise ConfigError("jira.allow_empty_release_field requires jira.release_field")

    train = TrainConfig(
        no_pipeline_policy=_no_pipeline_policy_with_default(
            train_data, "no_pipeline_policy", "skip"
        ),
        require_commit_consistency=_bool_with_default(
            train_data, "require_commit_consistency", True
        ),
    )

    return AppConfig(runtime=runtime, gitlab=gitlab, jira=jira, train=train)


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _require_str_or_int(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return _require_str(data, key)


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _require_secret(data: dict[str, object], key: str, *, env: Mapping[str, str]) -> str:
    env_key = f"{key}_env"
    if key in data and env_key in data:
        raise ConfigError(f"Set only one of {key} or {env_key}")
    if env_key in data:
        var_name = _require_str(data, env_key)
        value = env.get(var_name, "")
        if not value:
            raise ConfigError(f"Environment variable {var_name} (from {env_key}) is not set")
        return value
    if key in data:
        return _require_str(data, key)
    raise ConfigError(f"{key} or {env_key} is required")


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _statuses_with_default(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if isinstance(value, str):
        raw_items: list[object] = list(value.split(","))
    elif isinstance(value, list):
        raw_items = list(value)
    else:
        raise ConfigError(f"{key} must be a list of strings or a comma-separated string")

    statuses: list[str] = []
    for item in raw_items:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a list of strings or a comma-separated string")
        status = item.strip()
        if status and status not in statuses:
            statuses.append(status)
    return tuple(statuses)


def _no_pipeline_policy_with_default(
    data: dict[str, object], key: str, default: NoPipelinePolicy
) -> NoPipelinePolicy:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be one of: skip, stop")
    normalized = value.strip().lower()
    if normalized not in {"skip", "stop"}:
        raise ConfigError(f"{key} must be one of: skip, stop")
    return cast(NoPipelinePolicy, normalized)
