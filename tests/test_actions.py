from __future__ import annotations

from hypothesis import given, strategies as st
import pytest

from autorebase.actions import AmbiguousActionLabelsError, resolve_action
from autorebase.config import LabelsConfig
from autorebase.models import ActionResolution


_LABELS = LabelsConfig()
_OTHER_LABELS = st.lists(
    st.text(min_size=1, max_size=12).filter(
        lambda label: label not in {"automerge", "autorebase", "skip-approval-validation"}
    ),
    max_size=6,
)


def test_resolve_action_maps_each_label() -> None:
    assert resolve_action(("automerge",), _LABELS) == ActionResolution(
        action="merge", label="automerge", skip_validation=False
    )
    assert resolve_action(("bug", "autorebase"), _LABELS) == ActionResolution(
        action="rebase", label="autorebase", skip_validation=False
    )
    assert resolve_action((), _LABELS) == ActionResolution(
        action="none", label=None, skip_validation=False
    )


def test_resolve_action_detects_skip_validation_label() -> None:
    resolution = resolve_action(("skip-approval-validation", "autorebase"), _LABELS)
    assert resolution.action == "rebase"
    assert resolution.skip_validation is True


def test_resolve_action_rejects_both_action_labels() -> None:
    with pytest.raises(AmbiguousActionLabelsError, match=r"labels: automerge \+ autorebase"):
        resolve_action(("automerge", "autorebase"), _LABELS)


def test_resolve_action_honors_custom_label_names() -> None:
    labels = LabelsConfig(automerge="ship-it", autorebase="rebase-me", skip_validation="trust")
    assert resolve_action(("ship-it", "trust"), labels).action == "merge"
    assert resolve_action(("automerge",), labels).action == "none"


@given(_OTHER_LABELS)
def test_labels_without_action_label_resolve_to_none(labels: list[str]) -> None:
    resolution = resolve_action(labels, _LABELS)
    assert resolution.action == "none"
    assert resolution.label is None
    assert resolution.skip_validation is False


@given(_OTHER_LABELS, st.sampled_from(["automerge", "autorebase"]), st.booleans())
def test_single_action_label_resolves_regardless_of_position(
    others: list[str], action_label: str, skip: bool
) -> None:
    labels = [*others, action_label]
    if skip:
        labels.insert(0, "skip-approval-validation")
    resolution = resolve_action(reversed(labels), _LABELS)
    assert resolution.label == action_label
    assert resolution.action == ("merge" if action_label == "automerge" else "rebase")
    assert resolution.skip_validation is skip


@given(_OTHER_LABELS, st.permutations(["automerge", "autorebase"]))
def test_two_action_labels_are_always_ambiguous(others: list[str], pair: list[str]) -> None:
    with pytest.raises(AmbiguousActionLabelsError):
        resolve_action([pair[0], *others, pair[1]], _LABELS)
