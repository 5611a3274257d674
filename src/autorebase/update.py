from __future__ import annotations

from pathlib import Path
import logging

from autorebase.actions import resolve_action
from autorebase.config import AppConfig
from autorebase.executors import MergeExecutor, RebaseExecutor
from autorebase.git_ops import GitClient
from autorebase.github_gateway import GitHubGateway
from autorebase.models import PullRequest, UpdateOutcome, UpdateSkipped
from autorebase.observability import log_event
from autorebase.review import is_review_stable


LOGGER = logging.getLogger("autorebase.update")

# Posted verbatim. The label is not actually re-added; a human (or a later
# relabeling trigger) has to put it back.
ACTION_LABEL_DROPPED_NOTICE = (
    "Automerge label was dropped and added again due to the fact that either someone "
    "requested changes, you do not have a review, or someone who reviewed and approved "
    "your pr left comments. "
)


class InvalidUpdateArgumentsError(ValueError):
    """A collaborator or argument required to execute an update is missing."""


class UnknownActionError(RuntimeError):
    pass


class PullRequestUpdater:
    def __init__(
        self,
        config: AppConfig,
        *,
        github: GitHubGateway,
        git: GitClient,
    ) -> None:
        self._config = config
        self._github = github
        self._merge_executor = MergeExecutor(config.runtime, github)
        self._rebase_executor = RebaseExecutor(config.runtime, git)

    def update(
        self,
        pull_request: PullRequest,
        work_dir: Path | None,
        clone_url: str | None,
    ) -> UpdateOutcome:
        log_event(
            LOGGER,
            "pull_request_update_started",
            level=logging.DEBUG,
            pr_number=pull_request.number,
            title=pull_request.title,
        )

        if pull_request.merged:
            return UpdateSkipped(reason="already_merged")

        if pull_request.is_from_fork:
            return UpdateSkipped(
                reason="external_fork",
                detail=f"head_repo={pull_request.head.repo_full_name or '<deleted>'}",
            )

        resolution = resolve_action(pull_request.labels, self._config.labels)
        if resolution.action == "none":
            return UpdateSkipped(reason="no_action_label")

        if resolution.skip_validation:
            log_event(
                LOGGER,
                "review_validation_skipped",
                pr_number=pull_request.number,
                label=self._config.labels.skip_validation,
            )
        elif not is_review_stable(self._github, pull_request, self._config.labels.actions):
            self._drop_action_labels(pull_request)
            return UpdateSkipped(
                reason="review_unstable",
                detail="review activity after the action label was applied",
            )

        if self._github is None or work_dir is None or not clone_url:
            raise InvalidUpdateArgumentsError(
                "github gateway, work_dir and clone_url are required to update a pull request"
            )

        if resolution.action == "merge":
            return self._merge_executor.merge(pull_request)
        if resolution.action == "rebase":
            return self._rebase_executor.rebase(work_dir, clone_url, pull_request)
        raise UnknownActionError(f"invalid action: {resolution.action}")

    def _drop_action_labels(self, pull_request: PullRequest) -> None:
        actions = self._config.labels.actions
        remaining = tuple(label for label in pull_request.labels if label not in actions)
        self._github.update_issue_labels(pull_request.number, remaining)
        self._github.post_issue_comment(pull_request.number, ACTION_LABEL_DROPPED_NOTICE)
        log_event(
            LOGGER,
            "action_label_dropped",
            pr_number=pull_request.number,
            removed=tuple(label for label in pull_request.labels if label in actions),
        )
