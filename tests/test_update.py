from __future__ import annotations

from pathlib import Path

import pytest

from autorebase.actions import AmbiguousActionLabelsError
from autorebase.config import AppConfig, LabelsConfig, RepoConfig, RuntimeConfig
from autorebase.models import (
    BranchRef,
    LabelEvent,
    MergeBranchResult,
    PullRequest,
    Review,
    UpdateDone,
    UpdateSkipped,
)
from autorebase.update import (
    ACTION_LABEL_DROPPED_NOTICE,
    InvalidUpdateArgumentsError,
    PullRequestUpdater,
)


class FakeGitHub:
    def __init__(
        self,
        *,
        mergeable_state: str = "behind",
        events: list[LabelEvent] | None = None,
        reviews: list[Review] | None = None,
    ) -> None:
        self.mergeable_state = mergeable_state
        self.events = events or []
        self.reviews = reviews or []
        self.calls: list[str] = []
        self.label_updates: list[tuple[int, tuple[str, ...]]] = []
        self.comments: list[tuple[int, str]] = []
        self.merge_calls: list[tuple[str, str]] = []

    def list_issue_events(self, issue_number: int) -> list[LabelEvent]:
        self.calls.append(f"events:{issue_number}")
        return self.events

    def list_reviews(self, pr_number: int) -> list[Review]:
        self.calls.append(f"reviews:{pr_number}")
        return self.reviews

    def list_review_comments(self, pr_number: int, review_id: int) -> list[int]:
        self.calls.append(f"review_comments:{pr_number}:{review_id}")
        return []

    def get_mergeable_state(self, pr_number: int) -> str:
        self.calls.append(f"mergeable_state:{pr_number}")
        return self.mergeable_state

    def merge_branch(self, *, base: str, head: str) -> MergeBranchResult:
        self.calls.append("merge_branch")
        self.merge_calls.append((base, head))
        return MergeBranchResult(status_code=201, sha="abc123")

    def update_issue_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        self.calls.append("update_labels")
        self.label_updates.append((issue_number, labels))

    def post_issue_comment(self, issue_number: int, body: str) -> None:
        self.calls.append("comment")
        self.comments.append((issue_number, body))


class FakeGit:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def clone(self, url: str, checkout_path: Path, ref: str) -> None:
        self.calls.append(f"clone:{ref}")

    def fetch(self, checkout_path: Path, ref: str) -> None:
        self.calls.append(f"fetch:{ref}")

    def fetch_until_merge_base(self, checkout_path: Path, ref: str, timeout_seconds: int) -> str:
        self.calls.append("merge_base")
        return "mergebase"

    def head(self, checkout_path: Path) -> str:
        return "headsha"

    def sha(self, checkout_path: Path, rev: str) -> str:
        return "basesha"

    def rebase(self, checkout_path: Path, onto: str) -> None:
        self.calls.append(f"rebase:{onto}")

    def push(
        self, checkout_path: Path, ref: str, *, force: bool, expected_sha: str | None = None
    ) -> None:
        self.calls.append("push")


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        runtime=RuntimeConfig(base_dir=tmp_path),
        repo=RepoConfig(owner="acme", name="widgets"),
        labels=LabelsConfig(),
    )


def _pr(
    labels: tuple[str, ...] = ("automerge",),
    *,
    merged: bool = False,
    head_repo: str = "acme/widgets",
) -> PullRequest:
    return PullRequest(
        number=42,
        title="Add widgets",
        state="open",
        merged=merged,
        head=BranchRef(repo_full_name=head_repo, ref="feature", sha="headsha"),
        base=BranchRef(repo_full_name="acme/widgets", ref="main", sha="basesha"),
        labels=labels,
    )


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr("autorebase.executors.time.sleep", recorded.append)
    return recorded


def test_automerge_behind_merges_base_and_waits(tmp_path: Path, sleeps: list[float]) -> None:
    github = FakeGitHub(mergeable_state="behind")
    updater = PullRequestUpdater(_config(tmp_path), github=github, git=FakeGit())

    outcome = updater.update(_pr(), tmp_path, "https://github.com/acme/widgets.git")

    assert outcome == UpdateDone(action="merge", head_sha="abc123", changed=True)
    assert github.merge_calls == [("feature", "main")]
    assert sleeps == [30]


def test_autorebase_runs_git_pipeline(tmp_path: Path, sleeps: list[float]) -> None:
    git = FakeGit()
    updater = PullRequestUpdater(_config(tmp_path), github=FakeGitHub(), git=git)

    outcome = updater.update(_pr(("autorebase",)), tmp_path, "url")

    assert outcome == UpdateDone(action="rebase", head_sha="headsha", changed=False)
    assert git.calls == ["clone:feature", "fetch:main", "merge_base", "rebase:basesha"]
    assert sleeps == []


def test_already_merged_is_skipped_without_calls(tmp_path: Path) -> None:
    github = FakeGitHub()
    updater = PullRequestUpdater(_config(tmp_path), github=github, git=FakeGit())

    outcome = updater.update(_pr(merged=True), tmp_path, "url")

    assert outcome == UpdateSkipped(reason="already_merged")
    assert github.calls == []


@pytest.mark.parametrize(
    ("head_repo", "detail"),
    [("someone/widgets", "head_repo=someone/widgets"), ("", "head_repo=<deleted>")],
)
def test_fork_is_skipped_before_review_lookup(tmp_path: Path, head_repo: str, detail: str) -> None:
    github = FakeGitHub()
    updater = PullRequestUpdater(_config(tmp_path), github=github, git=FakeGit())

    outcome = updater.update(_pr(head_repo=head_repo), tmp_path, "url")

    assert outcome == UpdateSkipped(reason="external_fork", detail=detail)
    assert github.calls == []


def test_no_action_label_makes_no_calls(tmp_path: Path) -> None:
    github = FakeGitHub()
    git = FakeGit()
    updater = PullRequestUpdater(_config(tmp_path), github=github, git=git)

    outcome = updater.update(_pr(("bug",)), tmp_path, "url")

    assert outcome == UpdateSkipped(reason="no_action_label")
    assert github.calls == []
    assert git.calls == []


def test_both_action_labels_raise(tmp_path: Path) -> None:
    updater = PullRequestUpdater(_config(tmp_path), github=FakeGitHub(), git=FakeGit())

    with pytest.raises(AmbiguousActionLabelsError):
        updater.update(_pr(("automerge", "autorebase")), tmp_path, "url")


def test_unstable_review_drops_action_labels_and_posts_notice(tmp_path: Path) -> None:
    github = FakeGitHub(
        events=[
            LabelEvent(event="labeled", label_name="automerge", created_at="2026-03-01T12:00:00Z")
        ],
        reviews=[
            Review(
                review_id=5,
                state="COMMENTED",
                submitted_at="2026-03-01T13:00:00Z",
                user_login="bob",
            )
        ],
    )
    updater = PullRequestUpdater(_config(tmp_path), github=github, git=FakeGit())

    outcome = updater.update(_pr(("bug", "automerge")), tmp_path, "url")

    assert isinstance(outcome, UpdateSkipped)
    assert outcome.reason == "review_unstable"
    assert github.label_updates == [(42, ("bug",))]
    assert github.comments == [(42, ACTION_LABEL_DROPPED_NOTICE)]
    assert github.merge_calls == []
    assert "mergeable_state:42" not in github.calls


def test_skip_validation_label_bypasses_review_check(
    tmp_path: Path, sleeps: list[float]
) -> None:
    github = FakeGitHub(mergeable_state="clean")
    updater = PullRequestUpdater(_config(tmp_path), github=github, git=FakeGit())

    outcome = updater.update(_pr(("automerge", "skip-approval-validation")), tmp_path, "url")

    assert outcome == UpdateDone(action="merge", head_sha="headsha", changed=False)
    assert github.calls == ["mergeable_state:42"]


@pytest.mark.parametrize(
    ("work_dir", "clone_url"),
    [(None, "url"), (Path("/tmp/x"), ""), (Path("/tmp/x"), None)],
)
def test_missing_update_arguments_raise(
    tmp_path: Path, work_dir: Path | None, clone_url: str | None
) -> None:
    github = FakeGitHub()
    updater = PullRequestUpdater(_config(tmp_path), github=github, git=FakeGit())

    with pytest.raises(InvalidUpdateArgumentsError):
        updater.update(_pr(), work_dir, clone_url)
    assert "merge_branch" not in github.calls
