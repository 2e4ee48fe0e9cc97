from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import Literal, cast


VotingRequirement = Literal["majority", "unanimous"]


@dataclass(frozen=True)
class RuntimeConfig:
    base_dir: Path
    worker_count: int = 2
    bot_logins: frozenset[str] = frozenset({"quorumxo[bot]"})
    command_timeout_seconds: int = 60

    def is_bot(self, login: str) -> bool:
        return login.strip().lower() in self.bot_logins


@dataclass(frozen=True)
class VotingRules:
    min_voters: int = 0
    required_voters: tuple[str, ...] = ()
    required_voters_min: int = 0
    requires: VotingRequirement = "majority"


@dataclass(frozen=True)
class GovernanceConfig:
    discussion_hours: int = 24
    voting_hours: int = 24
    extended_voting_hours: int = 24
    voting: VotingRules = VotingRules()


@dataclass(frozen=True)
class MergeReadyConfig:
    min_approvals: int = 1


@dataclass(frozen=True)
class PrConfig:
    stale_days: int = 3
    max_prs_per_issue: int = 3
    trusted_reviewers: tuple[str, ...] = ()
    intake_min_approvals: int = 0
    merge_ready: MergeReadyConfig | None = None

    def is_trusted(self, login: str) -> bool:
        return login.strip().lower() in self.trusted_reviewers


@dataclass(frozen=True)
class RepoConfig:
    repo_id: str
    owner: str
    name: str
    governance: GovernanceConfig | None = None
    pr: PrConfig | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    repos: tuple[RepoConfig, ...]

    def find_repo(self, selector: str) -> RepoConfig:
        normalized = selector.strip().lower()
        for repo in self.repos:
            if repo.repo_id.lower() == normalized or repo.full_name.lower() == normalized:
                return repo
        available = ", ".join(repo.repo_id for repo in self.repos)
        raise ConfigError(f"Unknown repo {selector!r}; expected one of: {available}")


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    runtime_data = _require_table(data, "runtime")
    repo_data = _require_table(data, "repo")

    runtime = RuntimeConfig(
        base_dir=Path(_require_str(runtime_data, "base_dir")).expanduser(),
        worker_count=_int_with_default(runtime_data, "worker_count", 2),
        bot_logins=_logins_with_default(runtime_data, "bot_logins", ("quorumxo[bot]",)),
        command_timeout_seconds=_int_with_default(runtime_data, "command_timeout_seconds", 60),
    )
    if runtime.worker_count < 1:
        raise ConfigError("runtime.worker_count must be >= 1")
    if runtime.command_timeout_seconds < 1:
        raise ConfigError("runtime.command_timeout_seconds must be >= 1")
    if not runtime.bot_logins:
        raise ConfigError("runtime.bot_logins must contain at least one login")

    return AppConfig(runtime=runtime, repos=_load_repo_configs(repo_data))


def _load_repo_configs(repo_data: dict[str, object]) -> tuple[RepoConfig, ...]:
    if not repo_data:
        raise ConfigError("[repo] must define at least one [repo.<id>] table")

    repos: list[RepoConfig] = []
    for repo_id, raw_value in sorted(repo_data.items()):
        table = _require_nested_table(raw_value, table_name=f"[repo.{repo_id}]")
        repos.append(_parse_repo_config(repo_id=repo_id, repo_data=table))
    _ensure_unique_full_names(repos)
    return tuple(repos)


def _parse_repo_config(*, repo_id: str, repo_data: dict[str, object]) -> RepoConfig:
    governance_data = _optional_nested_table(repo_data, "governance", parent=repo_id)
    pr_data = _optional_nested_table(repo_data, "pr", parent=repo_id)
    return RepoConfig(
        repo_id=repo_id,
        owner=_require_str(repo_data, "owner"),
        name=_str_with_default(repo_data, "name", repo_id),
        governance=(
            _parse_governance_config(governance_data) if governance_data is not None else None
        ),
        pr=_parse_pr_config(pr_data, parent=repo_id) if pr_data is not None else None,
    )


def _parse_governance_config(data: dict[str, object]) -> GovernanceConfig:
    required_voters = _logins_with_default(data, "required_voters", ())
    rules = VotingRules(
        min_voters=_int_in_range(data, "min_voters", 0, minimum=0, maximum=1000),
        required_voters=tuple(sorted(required_voters)),
        required_voters_min=_int_in_range(
            data,
            "required_voters_min",
            len(required_voters),
            minimum=0,
            maximum=len(required_voters),
        ),
        requires=_voting_requirement(data.get("requires", "majority")),
    )
    return GovernanceConfig(
        discussion_hours=_int_in_range(data, "discussion_hours", 24, minimum=0, maximum=24 * 30),
        voting_hours=_int_in_range(data, "voting_hours", 24, minimum=0, maximum=24 * 30),
        extended_voting_hours=_int_in_range(
            data, "extended_voting_hours", 24, minimum=0, maximum=24 * 30
        ),
        voting=rules,
    )


def _parse_pr_config(data: dict[str, object], *, parent: str) -> PrConfig:
    merge_ready_data = _optional_nested_table(data, "merge_ready", parent=f"{parent}.pr")
    merge_ready: MergeReadyConfig | None = None
    if merge_ready_data is not None:
        merge_ready = MergeReadyConfig(
            min_approvals=_int_in_range(merge_ready_data, "min_approvals", 1, minimum=1, maximum=20)
        )
    return PrConfig(
        stale_days=_int_in_range(data, "stale_days", 3, minimum=1, maximum=30),
        max_prs_per_issue=_int_in_range(data, "max_prs_per_issue", 3, minimum=1, maximum=10),
        trusted_reviewers=tuple(sorted(_logins_with_default(data, "trusted_reviewers", ()))),
        intake_min_approvals=_int_in_range(data, "intake_min_approvals", 0, minimum=0, maximum=20),
        merge_ready=merge_ready,
    )


def _voting_requirement(value: object) -> VotingRequirement:
    if not isinstance(value, str):
        raise ConfigError("requires must be one of: majority, unanimous")
    normalized = value.strip().lower()
    if normalized not in {"majority", "unanimous"}:
        raise ConfigError("requires must be one of: majority, unanimous")
    return cast(VotingRequirement, normalized)


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    return cast(dict[str, object], value)


def _require_nested_table(value: object, *, table_name: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ConfigError(f"{table_name} must be a TOML table")
    return cast(dict[str, object], value)


def _optional_nested_table(
    data: dict[str, object], key: str, *, parent: str
) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    return _require_nested_table(value, table_name=f"[repo.{parent}.{key}]")


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _int_in_range(
    data: dict[str, object], key: str, default: int, *, minimum: int, maximum: int
) -> int:
    value = _int_with_default(data, key, default)
    if value < minimum or value > maximum:
        raise ConfigError(f"{key} must be between {minimum} and {maximum}")
    return value


def _logins_with_default(
    data: dict[str, object], key: str, default: tuple[str, ...]
) -> frozenset[str]:
    value = data.get(key, list(default))
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a list of strings")
        login = item.strip().lower()
        if not login:
            raise ConfigError(f"{key} entries must be non-empty strings")
        out.add(login)
    return frozenset(out)


def _ensure_unique_full_names(repos: list[RepoConfig]) -> None:
    seen: dict[str, str] = {}
    for repo in repos:
        key = repo.full_name.lower()
        existing_id = seen.get(key)
        if existing_id is not None:
            raise ConfigError(
                f"Duplicate repo full_name {repo.full_name!r} across repo ids "
                f"{existing_id!r} and {repo.repo_id!r}"
            )
        seen[key] = repo.repo_id
