from __future__ import annotations

from collections.abc import Iterable

from autorebase.config import LabelsConfig
from autorebase.models import Action, ActionResolution


class AmbiguousActionLabelsError(RuntimeError):
    """More than one action label is attached to the same pull request."""


def resolve_action(labels: Iterable[str], config: LabelsConfig) -> ActionResolution:
    action_label: str | None = None
    skip_validation = False
    for label in labels:
        if label in config.actions:
            if action_label is not None:
                raise AmbiguousActionLabelsError(f"ambiguous labels: {action_label} + {label}")
            action_label = label
        if label == config.skip_validation:
            skip_validation = True

    return ActionResolution(
        action=_action_for_label(action_label, config),
        label=action_label,
        skip_validation=skip_validation,
    )


def _action_for_label(label: str | None, config: LabelsConfig) -> Action:
    if label is None:
        return "none"
    if label == config.automerge:
        return "merge"
    return "rebase"
