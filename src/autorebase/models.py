from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


Action = Literal["merge", "rebase", "none"]
PullRequestState = Literal["open", "closed"]
SkipReason = Literal[
    "not_open",
    "blocking_label",
    "missing_required_label",
    "already_merged",
    "external_fork",
    "no_action_label",
    "review_unstable",
    "not_mergeable",
    "head_changed",
]


@dataclass(frozen=True)
class BranchRef:
    repo_full_name: str
    ref: str
    sha: str


@dataclass(frozen=True)
class PullRequest:
    number: int
    title: str
    state: PullRequestState
    merged: bool
    head: BranchRef
    base: BranchRef
    labels: tuple[str, ...]
    updated_at: str = ""

    @property
    def is_from_fork(self) -> bool:
        return self.head.repo_full_name != self.base.repo_full_name


@dataclass(frozen=True)
class LabelEvent:
    event: str
    label_name: str | None
    created_at: str


@dataclass(frozen=True)
class Review:
    review_id: int
    state: str
    submitted_at: str | None
    user_login: str


@dataclass(frozen=True)
class MergeBranchResult:
    status_code: int
    sha: str | None

    @property
    def is_noop(self) -> bool:
        return self.status_code == 204


@dataclass(frozen=True)
class ActionResolution:
    action: Action
    label: str | None
    skip_validation: bool


@dataclass(frozen=True)
class UpdateDone:
    action: Action
    head_sha: str
    changed: bool


@dataclass(frozen=True)
class UpdateSkipped:
    reason: SkipReason
    detail: str = ""


UpdateOutcome = UpdateDone | UpdateSkipped


@dataclass(frozen=True)
class BatchSummary:
    updated: tuple[int, ...] = ()
    skipped: tuple[int, ...] = ()
    failed: tuple[int, ...] = ()
