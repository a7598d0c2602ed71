"""Label definitions for osoba.

This module centralizes the status labels that drive the development loop.
Labels are the only source of truth for item state:
- Trigger labels are set by humans (or agents) to request the next phase
- In-progress labels are set by osoba when it claims an item
- Review outcome labels (lgtm, requires-changes) drive the PR watcher
"""

from typing import TypedDict

LABEL_PREFIX = "status:"


class LabelConfig(TypedDict):
    """Configuration for a GitHub label."""

    description: str
    color: str


class Labels:
    """Constants for all osoba status label names."""

    # Trigger labels
    NEEDS_PLAN = "status:needs-plan"
    READY = "status:ready"
    REVIEW_REQUESTED = "status:review-requested"

    # In-progress labels
    PLANNING = "status:planning"
    IMPLEMENTING = "status:implementing"
    REVIEWING = "status:reviewing"
    REVISING = "status:revising"

    # Review outcome labels
    LGTM = "status:lgtm"
    REQUIRES_CHANGES = "status:requires-changes"


class Phases:
    """Phase names, used for prompt lookup and window naming."""

    PLAN = "plan"
    IMPLEMENT = "implement"
    REVIEW = "review"
    REVISE = "revise"


# Ordered vocabulary of every recognized status label
STATUS_LABELS: tuple[str, ...] = (
    Labels.NEEDS_PLAN,
    Labels.PLANNING,
    Labels.READY,
    Labels.IMPLEMENTING,
    Labels.REVIEW_REQUESTED,
    Labels.REVIEWING,
    Labels.LGTM,
    Labels.REQUIRES_CHANGES,
    Labels.REVISING,
)

# Legal claim transitions: trigger label -> in-progress label
TRANSITIONS: dict[str, str] = {
    Labels.NEEDS_PLAN: Labels.PLANNING,
    Labels.READY: Labels.IMPLEMENTING,
    Labels.REVIEW_REQUESTED: Labels.REVIEWING,
    Labels.REQUIRES_CHANGES: Labels.REVISING,
}

IN_PROGRESS_LABELS: frozenset[str] = frozenset(TRANSITIONS.values())

# Phase implied by each in-progress label
PHASE_FOR_LABEL: dict[str, str] = {
    Labels.PLANNING: Phases.PLAN,
    Labels.IMPLEMENTING: Phases.IMPLEMENT,
    Labels.REVIEWING: Phases.REVIEW,
    Labels.REVISING: Phases.REVISE,
}

# Trigger labels the issue watcher polls for, in priority order
ISSUE_TRIGGER_LABELS: tuple[str, ...] = (
    Labels.NEEDS_PLAN,
    Labels.READY,
    Labels.REVIEW_REQUESTED,
)

# Labels the PR watcher polls for
PR_WATCHED_LABELS: tuple[str, ...] = (
    Labels.LGTM,
    Labels.REQUIRES_CHANGES,
)

# Labels created in the repository on startup and on `osoba init`
REQUIRED_LABELS: dict[str, LabelConfig] = {
    Labels.NEEDS_PLAN: {
        "description": "Planning phase required",
        "color": "0075ca",
    },
    Labels.READY: {
        "description": "Ready for implementation",
        "color": "0e8a16",
    },
    Labels.REVIEW_REQUESTED: {
        "description": "Review requested",
        "color": "d93f0b",
    },
    Labels.PLANNING: {
        "description": "Currently in planning phase",
        "color": "1d76db",
    },
    Labels.IMPLEMENTING: {
        "description": "Currently being implemented",
        "color": "28a745",
    },
    Labels.REVIEWING: {
        "description": "Currently under review",
        "color": "e99695",
    },
    Labels.LGTM: {
        "description": "Review approved, ready to merge",
        "color": "0e8a16",
    },
    Labels.REQUIRES_CHANGES: {
        "description": "Review found issues to address",
        "color": "d73a4a",
    },
    Labels.REVISING: {
        "description": "Currently addressing review feedback",
        "color": "fbca04",
    },
}


def find_trigger_label(labels: set[str] | list[str]) -> str | None:
    """Return the highest-priority trigger label present in labels.

    Priority follows the order of TRANSITIONS. Returns None when the set
    carries no recognized trigger label or already carries an in-progress label.
    """
    label_set = set(labels)
    if label_set & IN_PROGRESS_LABELS:
        return None
    for trigger in TRANSITIONS:
        if trigger in label_set:
            return trigger
    return None


def has_status_label(labels: set[str] | list[str]) -> bool:
    """Whether any status:* label is present, recognized or not."""
    return any(label.startswith(LABEL_PREFIX) for label in labels)
