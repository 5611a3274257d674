from __future__ import annotations

from pathlib import Path
import logging
import tempfile
import time

from autorebase.config import AppConfig
from autorebase.git_ops import GitClient
from autorebase.github_gateway import GitHubGateway
from autorebase.models import BatchSummary, PullRequest, UpdateOutcome, UpdateSkipped
from autorebase.observability import log_event
from autorebase.process_lock import run_lock
from autorebase.update import PullRequestUpdater


LOGGER = logging.getLogger("autorebase.orchestrator")


class UpdateOrchestrator:
    def __init__(
        self,
        config: AppConfig,
        *,
        github: GitHubGateway,
        git: GitClient,
        updater: PullRequestUpdater | None = None,
    ) -> None:
        self._config = config
        self._github = github
        self._updater = updater or PullRequestUpdater(config, github=github, git=git)

    def run(self, *, once: bool) -> None:
        with run_lock(
            base_dir=self._config.runtime.base_dir,
            repo_full_name=self._config.repo.full_name,
            command="run",
        ):
            while True:
                try:
                    self.run_once()
                except Exception as exc:  # noqa: BLE001
                    if once:
                        raise
                    log_event(
                        LOGGER,
                        "batch_failed",
                        level=logging.ERROR,
                        repo_full_name=self._config.repo.full_name,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                if once:
                    return
                time.sleep(self._config.runtime.poll_interval_seconds)

    def run_once(self) -> BatchSummary:
        pull_requests = self._github.list_open_pull_requests(self._config.runtime.page_size)
        self._github.prune_cache({pull_request.number for pull_request in pull_requests})
        log_event(
            LOGGER,
            "batch_started",
            repo_full_name=self._config.repo.full_name,
            pull_request_count=len(pull_requests),
        )

        updated: list[int] = []
        skipped: list[int] = []
        failed: list[int] = []
        for pull_request in pull_requests:
            try:
                outcome = self.process(pull_request)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    LOGGER,
                    "pull_request_update_failed",
                    level=logging.ERROR,
                    pr_number=pull_request.number,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                failed.append(pull_request.number)
                continue
            if isinstance(outcome, UpdateSkipped):
                skipped.append(pull_request.number)
            else:
                updated.append(pull_request.number)

        summary = BatchSummary(
            updated=tuple(updated),
            skipped=tuple(skipped),
            failed=tuple(failed),
        )
        log_event(
            LOGGER,
            "batch_finished",
            repo_full_name=self._config.repo.full_name,
            updated_count=len(summary.updated),
            skipped_count=len(summary.skipped),
            failed_count=len(summary.failed),
        )
        return summary

    def update_single(self, pr_number: int) -> UpdateOutcome:
        with run_lock(
            base_dir=self._config.runtime.base_dir,
            repo_full_name=self._config.repo.full_name,
            command="update",
        ):
            return self.process(self._github.get_pull_request(pr_number))

    def process(self, pull_request: PullRequest) -> UpdateOutcome:
        outcome = self._precheck(pull_request)
        if outcome is None:
            work_root = self._config.runtime.work_root
            work_root.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(
                prefix=f"pr-{pull_request.number}-", dir=work_root
            ) as tmp:
                outcome = self._updater.update(
                    pull_request,
                    Path(tmp),
                    self._config.repo.clone_url(),
                )

        if isinstance(outcome, UpdateSkipped):
            log_event(
                LOGGER,
                "pull_request_skipped",
                level=logging.DEBUG,
                pr_number=pull_request.number,
                reason=outcome.reason,
                detail=outcome.detail,
            )
        else:
            log_event(
                LOGGER,
                "pull_request_updated",
                pr_number=pull_request.number,
                action=outcome.action,
                head_sha=outcome.head_sha,
                changed=outcome.changed,
            )
        return outcome

    def _precheck(self, pull_request: PullRequest) -> UpdateSkipped | None:
        if pull_request.state != "open":
            return UpdateSkipped(reason="not_open", detail=f"state={pull_request.state}")

        labels = self._config.labels
        for label in pull_request.labels:
            if label in labels.blocking:
                return UpdateSkipped(reason="blocking_label", detail=f"label={label}")

        for required in labels.required:
            if required not in pull_request.labels:
                return UpdateSkipped(reason="missing_required_label", detail=f"label={required}")
        return None
