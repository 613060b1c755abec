"""Field-level diffs between two issue states"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

# Scalar fields recorded in issue history. Title and description are not tracked.
TRACKED_FIELDS: Tuple[str, ...] = ("assignee_id", "priority", "parent_id", "state_id", "estimate")


@dataclass(frozen=True)
class IssueSnapshot:
    """Immutable copy of the issue attributes a diff looks at"""

    id: Optional[str] = None
    team_id: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[int] = None
    parent_id: Optional[str] = None
    state_id: Optional[str] = None
    estimate: Optional[float] = None
    label_ids: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_issue(cls, issue: Any) -> "IssueSnapshot":
        """Snapshot an ORM row (or any object with the same attributes)."""
        values = {name: getattr(issue, name, None) for name in TRACKED_FIELDS}
        return cls(
            id=getattr(issue, "id", None),
            team_id=getattr(issue, "team_id", None),
            label_ids=tuple(getattr(issue, "label_ids", None) or ()),
            **values,
        )


def diff_issues(previous: Optional[IssueSnapshot], current: IssueSnapshot) -> Dict[str, Any]:
    """Return the sparse change record from `previous` to `current`.

    Keys are `from_<field>`/`to_<field>` for each tracked field that changed, plus
    `added_label_ids` and `removed_label_ids` (always present, sorted). With no
    `previous` (creation) only `to_<field>` keys for defined values are emitted and
    every label counts as added.
    """
    result: Dict[str, Any] = {}
    current_labels = set(current.label_ids)

    if previous is None:
        for name in TRACKED_FIELDS:
            value = getattr(current, name)
            if value is not None:
                result[f"to_{name}"] = value
        result["added_label_ids"] = sorted(current_labels)
        result["removed_label_ids"] = []
        return result

    for name in TRACKED_FIELDS:
        before = getattr(previous, name)
        after = getattr(current, name)
        if before != after:
            result[f"from_{name}"] = before
            result[f"to_{name}"] = after

    previous_labels = set(previous.label_ids)
    result["added_label_ids"] = sorted(current_labels - previous_labels)
    result["removed_label_ids"] = sorted(previous_labels - current_labels)
    return result


def diff_json(diff: Dict[str, Any]) -> str:
    """Canonical serialized form; equal diffs serialize to identical bytes."""
    return json.dumps(diff, sort_keys=True, separators=(",", ":"))
