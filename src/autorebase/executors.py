from __future__ import annotations

from pathlib import Path
import logging
import time

from autorebase.config import RuntimeConfig
from autorebase.git_ops import GitClient
from autorebase.github_gateway import GitHubGateway
from autorebase.models import PullRequest, UpdateDone, UpdateOutcome, UpdateSkipped
from autorebase.observability import log_event


LOGGER = logging.getLogger("autorebase.executors")
_UP_TO_DATE_STATES = frozenset({"clean", "has_hooks"})


class MergeExecutor:
    def __init__(self, runtime: RuntimeConfig, github: GitHubGateway) -> None:
        self._runtime = runtime
        self._github = github

    def merge(self, pull_request: PullRequest) -> UpdateOutcome:
        head_ref = pull_request.head.ref
        base_ref = pull_request.base.ref
        state = self._github.get_mergeable_state(pull_request.number)

        if state == "behind":
            log_event(
                LOGGER,
                "branch_merge_requested",
                level=logging.DEBUG,
                pr_number=pull_request.number,
                base=base_ref,
                head=head_ref,
            )
            # The merges API merges `head` into `base`, so the PR's refs swap roles here.
            result = self._github.merge_branch(base=head_ref, head=base_ref)
            if result.is_noop or result.sha is None:
                log_event(
                    LOGGER,
                    "branch_up_to_date",
                    pr_number=pull_request.number,
                    head=head_ref,
                )
                return UpdateDone(action="merge", head_sha=pull_request.head.sha, changed=False)

            log_event(
                LOGGER,
                "branch_merged",
                pr_number=pull_request.number,
                head=head_ref,
                new_head_sha=result.sha,
            )
            _settle(self._runtime)
            return UpdateDone(action="merge", head_sha=result.sha, changed=True)

        if state in _UP_TO_DATE_STATES:
            log_event(
                LOGGER,
                "branch_up_to_date",
                pr_number=pull_request.number,
                mergeable_state=state,
            )
            return UpdateDone(action="merge", head_sha=pull_request.head.sha, changed=False)

        return UpdateSkipped(reason="not_mergeable", detail=f"mergeable_state={state}")


class RebaseExecutor:
    def __init__(self, runtime: RuntimeConfig, git: GitClient) -> None:
        self._runtime = runtime
        self._git = git

    def rebase(self, work_dir: Path, clone_url: str, pull_request: PullRequest) -> UpdateOutcome:
        head_ref = pull_request.head.ref
        base_ref = pull_request.base.ref
        checkout_path = work_dir / "checkout"

        self._git.clone(clone_url, checkout_path, head_ref)
        self._git.fetch(checkout_path, base_ref)
        self._git.fetch_until_merge_base(
            checkout_path, base_ref, self._runtime.merge_base_timeout_seconds
        )

        head = self._git.head(checkout_path)
        if head != pull_request.head.sha:
            return UpdateSkipped(
                reason="head_changed",
                detail=f"expected={pull_request.head.sha} actual={head}",
            )

        onto = self._git.sha(checkout_path, f"origin/{base_ref}")
        log_event(
            LOGGER,
            "branch_rebase_started",
            level=logging.DEBUG,
            pr_number=pull_request.number,
            head=head_ref,
            head_sha=head,
            base=base_ref,
            onto=onto,
        )
        self._git.rebase(checkout_path, onto)

        new_head = self._git.head(checkout_path)
        if new_head == head:
            log_event(
                LOGGER,
                "branch_up_to_date",
                pr_number=pull_request.number,
                head=head_ref,
                onto=onto,
            )
            return UpdateDone(action="rebase", head_sha=head, changed=False)

        self._git.push(checkout_path, head_ref, force=True, expected_sha=head)
        _settle(self._runtime)
        log_event(
            LOGGER,
            "branch_rebased",
            pr_number=pull_request.number,
            head=head_ref,
            old_head_sha=head,
            new_head_sha=new_head,
        )
        return UpdateDone(action="rebase", head_sha=new_head, changed=True)


def _settle(runtime: RuntimeConfig) -> None:
    # Status checks and other bots react to the branch update asynchronously.
    if runtime.settle_delay_seconds > 0:
        time.sleep(runtime.settle_delay_seconds)
