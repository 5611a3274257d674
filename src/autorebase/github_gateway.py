from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
import json
import logging
import re
from typing import cast
from urllib.parse import urlencode

from autorebase.models import (
    BranchRef,
    LabelEvent,
    MergeBranchResult,
    PullRequest,
    PullRequestState,
    Review,
)
from autorebase.observability import log_event
from autorebase.shell import run


LOGGER = logging.getLogger("autorebase.github_gateway")
_PAGE_SIZE = 100
_PR_PATH_PATTERN = re.compile(r"/(?:pulls|issues)/(\d+)(?:[/?]|$)")


class GitHubPollingError(RuntimeError):
    """Recoverable GitHub read failure; the next poll re-evaluates from scratch."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    _etags_by_path: dict[str, str] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )
    _cached_get_payload_by_path: dict[str, object] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_open_pull_requests(self, page_size: int = _PAGE_SIZE) -> list[PullRequest]:
        if not 1 <= page_size <= _PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {_PAGE_SIZE}")
        query = urlencode(
            {
                "state": "open",
                "sort": "updated",
                "direction": "desc",
                "per_page": str(page_size),
            }
        )
        payload = self._api_json("GET", f"/repos/{self.owner}/{self.name}/pulls?{query}")
        if not isinstance(payload, list):
            raise RuntimeError("Unexpected GitHub response: expected list for pull requests")

        pull_requests: list[PullRequest] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            pull_requests.append(_parse_pull_request(item_obj))
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_requests",
            count=len(pull_requests),
        )
        return pull_requests

    def get_pull_request(self, pr_number: int) -> PullRequest:
        payload = self._api_json("GET", f"/repos/{self.owner}/{self.name}/pulls/{pr_number}")
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for pull request")
        pull_request = _parse_pull_request(payload_obj)
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            pr_number=pull_request.number,
        )
        return pull_request

    def get_mergeable_state(self, pr_number: int) -> str:
        payload = self._api_json("GET", f"/repos/{self.owner}/{self.name}/pulls/{pr_number}")
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for pull request")
        state = _as_string(payload_obj.get("mergeable_state")).strip().lower() or "unknown"
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_mergeable_state",
            pr_number=pr_number,
            mergeable_state=state,
        )
        return state

    def merge_branch(self, *, base: str, head: str) -> MergeBranchResult:
        """Merge ``head`` into the branch named ``base``.

        GitHub answers 201 with the merge commit, or 204 when ``base`` already
        contains ``head``.
        """
        path = f"/repos/{self.owner}/{self.name}/merges"
        status_code, body = self._api_request(
            "POST", path, payload={"base": base, "head": head}
        )
        sha: str | None = None
        if status_code != 204:
            payload_obj = _as_object_dict(json.loads(body)) if body.strip() else None
            if payload_obj is None:
                raise RuntimeError("Unexpected GitHub response: expected object for merge")
            sha = _as_string(payload_obj.get("sha")) or None
            if sha is None:
                raise RuntimeError("Unexpected GitHub response: merge commit is missing sha")
        log_event(
            LOGGER,
            "github_branch_merge",
            base=base,
            head=head,
            status_code=status_code,
            sha=sha,
        )
        return MergeBranchResult(status_code=status_code, sha=sha)

    def update_issue_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}"
        try:
            self._api_json("PATCH", path, payload={"labels": list(labels)})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_labels_update_failed",
                level=logging.WARNING,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_labels_updated", issue_number=issue_number, labels=labels)

    def post_issue_comment(self, issue_number: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                level=logging.WARNING,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_issue_comment_posted", issue_number=issue_number)

    def list_reviews(self, pr_number: int) -> list[Review]:
        reviews: list[Review] = []
        for item_obj in self._paginate(
            f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/reviews"
        ):
            user_obj = _as_object_dict(item_obj.get("user"))
            reviews.append(
                Review(
                    review_id=_as_int(item_obj.get("id"), field="id"),
                    state=_as_string(item_obj.get("state")).strip().upper(),
                    submitted_at=_as_optional_str(item_obj.get("submitted_at")),
                    user_login=_as_string(user_obj.get("login") if user_obj else None),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_reviews",
            pr_number=pr_number,
            count=len(reviews),
        )
        return reviews

    def list_issue_events(self, issue_number: int) -> list[LabelEvent]:
        events: list[LabelEvent] = []
        for item_obj in self._paginate(
            f"/repos/{self.owner}/{self.name}/issues/{issue_number}/events"
        ):
            label_obj = _as_object_dict(item_obj.get("label"))
            events.append(
                LabelEvent(
                    event=_as_string(item_obj.get("event")),
                    label_name=_as_optional_str(label_obj.get("name")) if label_obj else None,
                    created_at=_as_string(item_obj.get("created_at")),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_events",
            issue_number=issue_number,
            count=len(events),
        )
        return events

    def list_review_comments(self, pr_number: int, review_id: int) -> list[int]:
        comment_ids = [
            _as_int(item_obj.get("id"), field="id")
            for item_obj in self._paginate(
                f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/reviews/{review_id}/comments"
            )
        ]
        log_event(
            LOGGER,
            "github_read",
            endpoint="review_comments",
            pr_number=pr_number,
            review_id=review_id,
            count=len(comment_ids),
        )
        return comment_ids

    def prune_cache(self, open_pr_numbers: Collection[int]) -> None:
        """Drop cached GET payloads for pull requests that are no longer open."""
        stale_paths: list[str] = []
        for path in self._etags_by_path:
            match = _PR_PATH_PATTERN.search(path)
            if match is not None and int(match.group(1)) not in open_pr_numbers:
                stale_paths.append(path)
        for path in stale_paths:
            self._etags_by_path.pop(path, None)
            self._cached_get_payload_by_path.pop(path, None)
        if stale_paths:
            log_event(
                LOGGER,
                "github_cache_pruned",
                level=logging.DEBUG,
                removed_count=len(stale_paths),
                remaining_count=len(self._etags_by_path),
            )

    def _paginate(self, path: str) -> list[dict[str, object]]:
        items: list[dict[str, object]] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            payload = self._api_json("GET", f"{path}?{query}")
            if not isinstance(payload, list):
                raise RuntimeError(f"Unexpected GitHub response: expected list for {path}")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is not None:
                    items.append(item_obj)
            if len(payload) < _PAGE_SIZE:
                return items
            page += 1

    def _api_request(
        self, method: str, path: str, payload: dict[str, object] | None = None
    ) -> tuple[int, str]:
        cmd = ["gh", "api", "--method", method.upper(), "--include", path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload, check=False)
        status_code, _headers, body = _parse_http_response(raw)
        if status_code < 200 or status_code >= 300:
            message = body.strip() or "<empty>"
            raise RuntimeError(
                f"GitHub API {method.upper()} {path} failed with status {status_code}: {message}"
            )
        return status_code, body

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        if method_upper == "GET":
            cmd = ["gh", "api", "--method", method_upper]
            etag = self._etags_by_path.get(path)
            if etag:
                cmd.extend(["--header", f"If-None-Match: {etag}"])
            cmd.extend(["--include", path])

            raw = run(cmd, check=False)
            try:
                status_code, headers, body = _parse_http_response(raw)

                if status_code == 304:
                    cached_payload = self._cached_get_payload_by_path.get(path)
                    if cached_payload is None:
                        raise RuntimeError(f"GitHub returned 304 for uncached path: {path}")
                    return cached_payload

                if status_code < 200 or status_code >= 300:
                    message = body.strip() or "<empty>"
                    raise RuntimeError(
                        f"GitHub API request failed with status {status_code}: {message}"
                    )

                payload_obj = json.loads(body)
                etag = headers.get("etag")
                if etag:
                    self._etags_by_path[path] = etag
                    self._cached_get_payload_by_path[path] = payload_obj
                return payload_obj
            except Exception as exc:
                log_event(
                    LOGGER,
                    "github_get_failed",
                    level=logging.WARNING,
                    path=path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise GitHubPollingError(f"GitHub GET failed for path {path}: {exc}") from exc

        cmd = ["gh", "api", "--method", method_upper, path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload)
        return json.loads(raw) if raw.strip() else None


def _parse_pull_request(payload_obj: dict[str, object]) -> PullRequest:
    head = _as_object_dict(payload_obj.get("head"))
    base = _as_object_dict(payload_obj.get("base"))
    if head is None or base is None:
        raise RuntimeError("Unexpected GitHub response: missing pull request head/base")

    state = _as_string(payload_obj.get("state")).strip().lower()
    if state not in {"open", "closed"}:
        raise RuntimeError(f"Unexpected GitHub pull request state: {state!r}")

    # The list endpoint omits `merged`; `merged_at` is present on both shapes.
    merged_raw = payload_obj.get("merged")
    merged = _as_bool(merged_raw) if merged_raw is not None else (
        payload_obj.get("merged_at") is not None
    )

    return PullRequest(
        number=_as_int(payload_obj.get("number"), field="number"),
        title=_as_string(payload_obj.get("title")),
        state=cast(PullRequestState, state),
        merged=merged,
        head=_parse_branch_ref(head),
        base=_parse_branch_ref(base),
        labels=_label_names(payload_obj.get("labels")),
        updated_at=_as_string(payload_obj.get("updated_at")),
    )


def _parse_branch_ref(branch_obj: dict[str, object]) -> BranchRef:
    # A deleted head repository comes back as `repo: null`.
    repo_obj = _as_object_dict(branch_obj.get("repo"))
    return BranchRef(
        repo_full_name=_as_string(repo_obj.get("full_name")) if repo_obj else "",
        ref=_as_string(branch_obj.get("ref")),
        sha=_as_string(branch_obj.get("sha")),
    )


def _label_names(labels_obj: object) -> tuple[str, ...]:
    label_names: list[str] = []
    if isinstance(labels_obj, list):
        for entry in labels_obj:
            entry_obj = _as_object_dict(entry)
            if entry_obj is None:
                continue
            name = entry_obj.get("name")
            if isinstance(name, str):
                label_names.append(name)
    return tuple(label_names)


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


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


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise RuntimeError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise RuntimeError(f"Unexpected GitHub response type for {field}")


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    raise RuntimeError("Unexpected GitHub response type for bool field")
