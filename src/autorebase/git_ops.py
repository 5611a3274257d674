from __future__ import annotations

from pathlib import Path
import logging
import time

from autorebase.config import RepoConfig
from autorebase.observability import log_event
from autorebase.shell import CommandTimeoutError, run


LOGGER = logging.getLogger("autorebase.git_ops")
_INITIAL_DEPTH = 50
_DEEPEN_STEP = 100


class MergeBaseTimeoutError(RuntimeError):
    """No common ancestor with the base branch was found before the deadline."""


class GitClient:
    """Thin wrapper over the git CLI for a single throwaway checkout."""

    def __init__(self, repo: RepoConfig) -> None:
        self.repo = repo

    def clone(self, url: str, checkout_path: Path, ref: str) -> None:
        log_event(LOGGER, "git_clone", checkout_path=str(checkout_path), ref=ref)
        run(
            [
                "git",
                "clone",
                "--quiet",
                f"--depth={_INITIAL_DEPTH}",
                "--single-branch",
                "--branch",
                ref,
                url,
                str(checkout_path),
            ]
        )

    def fetch(self, checkout_path: Path, ref: str) -> None:
        log_event(LOGGER, "git_fetch", checkout_path=str(checkout_path), ref=ref)
        run(
            [
                "git",
                "-C",
                str(checkout_path),
                "fetch",
                "--quiet",
                f"--depth={_INITIAL_DEPTH}",
                "origin",
                _tracking_refspec(ref),
            ]
        )

    def fetch_until_merge_base(
        self,
        checkout_path: Path,
        ref: str,
        timeout_seconds: float,
    ) -> str:
        deadline = time.monotonic() + timeout_seconds
        rounds = 0
        while True:
            merge_base = self._merge_base(checkout_path, "HEAD", f"origin/{ref}")
            if merge_base is not None:
                log_event(
                    LOGGER,
                    "git_merge_base_found",
                    checkout_path=str(checkout_path),
                    ref=ref,
                    merge_base=merge_base,
                    deepen_rounds=rounds,
                )
                return merge_base
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise MergeBaseTimeoutError(
                    f"No merge base with origin/{ref} after {timeout_seconds}s "
                    f"({rounds} deepen rounds)"
                )
            if self._is_shallow(checkout_path):
                rounds += 1
                try:
                    run(
                        [
                            "git",
                            "-C",
                            str(checkout_path),
                            "fetch",
                            "--quiet",
                            f"--deepen={_DEEPEN_STEP}",
                            "origin",
                            _tracking_refspec(self._current_branch(checkout_path)),
                            _tracking_refspec(ref),
                        ],
                        timeout=remaining,
                    )
                except CommandTimeoutError as exc:
                    raise MergeBaseTimeoutError(
                        f"No merge base with origin/{ref} after {timeout_seconds}s "
                        f"(deepen round {rounds} timed out)"
                    ) from exc
            else:
                # Full history on both sides and still unrelated: more fetching cannot help.
                raise MergeBaseTimeoutError(f"HEAD and origin/{ref} share no history")

    def head(self, checkout_path: Path) -> str:
        return self.sha(checkout_path, "HEAD")

    def sha(self, checkout_path: Path, ref: str) -> str:
        return run(["git", "-C", str(checkout_path), "rev-parse", "--verify", ref]).strip()

    def rebase(self, checkout_path: Path, onto: str) -> None:
        log_event(LOGGER, "git_rebase", checkout_path=str(checkout_path), onto=onto)
        run(
            [
                "git",
                "-C",
                str(checkout_path),
                "-c",
                f"user.name={self.repo.committer_name}",
                "-c",
                f"user.email={self.repo.committer_email}",
                "rebase",
                "--quiet",
                onto,
            ]
        )

    def push(
        self,
        checkout_path: Path,
        ref: str,
        *,
        force: bool,
        expected_sha: str | None = None,
    ) -> None:
        log_event(
            LOGGER,
            "git_push",
            checkout_path=str(checkout_path),
            ref=ref,
            force=force,
        )
        cmd = ["git", "-C", str(checkout_path), "push", "--quiet"]
        if force and expected_sha is not None:
            cmd.append(f"--force-with-lease={ref}:{expected_sha}")
        elif force:
            cmd.append("--force")
        cmd.extend(["origin", f"HEAD:refs/heads/{ref}"])
        try:
            run(cmd)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "git_push_failed",
                level=logging.WARNING,
                checkout_path=str(checkout_path),
                ref=ref,
                error_type=type(exc).__name__,
            )
            raise

    def _merge_base(self, checkout_path: Path, left: str, right: str) -> str | None:
        # Exit status 1 with no output while the shallow histories do not meet yet.
        out = run(
            ["git", "-C", str(checkout_path), "merge-base", left, right], check=False
        ).strip()
        return out or None

    def _current_branch(self, checkout_path: Path) -> str:
        return run(
            ["git", "-C", str(checkout_path), "rev-parse", "--abbrev-ref", "HEAD"]
        ).strip()

    def _is_shallow(self, checkout_path: Path) -> bool:
        out = run(["git", "-C", str(checkout_path), "rev-parse", "--is-shallow-repository"])
        return out.strip() == "true"


def _tracking_refspec(ref: str) -> str:
    return f"+refs/heads/{ref}:refs/remotes/origin/{ref}"
