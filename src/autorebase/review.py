from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
import logging

from autorebase.github_gateway import GitHubGateway
from autorebase.models import LabelEvent, PullRequest
from autorebase.observability import log_event


LOGGER = logging.getLogger("autorebase.review")
_VERDICT_STATES = frozenset({"APPROVED", "CHANGES_REQUESTED"})


def is_review_stable(
    github: GitHubGateway,
    pull_request: PullRequest,
    action_labels: Sequence[str],
) -> bool:
    """Return False when the review state regressed after an action label was applied.

    Reviews are walked newest first and scanning stops at the first one
    submitted before the label. A verdict (approve or request changes) only
    counts against the pull request when it carries review comments; any
    other review state (comment, dismissal) always does.
    """
    events = github.list_issue_events(pull_request.number)
    reviews = github.list_reviews(pull_request.number)

    labeled_at = last_labeled_at(events, action_labels)
    if labeled_at is None:
        log_event(
            LOGGER,
            "review_no_label_event",
            level=logging.DEBUG,
            pr_number=pull_request.number,
        )
        return True

    for review in reversed(reviews):
        submitted_at = _parse_timestamp(review.submitted_at)
        if submitted_at is not None and submitted_at < labeled_at:
            break
        if review.state in _VERDICT_STATES:
            comments = github.list_review_comments(pull_request.number, review.review_id)
            destabilizing = bool(comments)
        else:
            destabilizing = True
        if destabilizing:
            log_event(
                LOGGER,
                "review_destabilizing",
                pr_number=pull_request.number,
                review_id=review.review_id,
                review_state=review.state,
                reviewer=review.user_login,
            )
            return False
    return True


def last_labeled_at(events: Sequence[LabelEvent], action_labels: Sequence[str]) -> datetime | None:
    for event in reversed(events):
        if event.event == "labeled" and event.label_name in action_labels:
            return _parse_timestamp(event.created_at)
    return None


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
