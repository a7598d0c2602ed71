"""Label transition engine.

Claims an issue by walking its status label one step along the static
TRANSITIONS table. A requires-changes review on a pull request is claimed by
moving the trigger off the PR and advancing the issue the PR closes. The live
labels are re-read right before any mutation so a stale snapshot never
produces a second claim.
"""

from dataclasses import dataclass

from osoba.interfaces import GitHubClient
from osoba.labels import (
    IN_PROGRESS_LABELS,
    PHASE_FOR_LABEL,
    TRANSITIONS,
    Labels,
    find_trigger_label,
)
from osoba.logger import get_logger
from osoba.telemetry import record_claim

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a claim attempt.

    Attributes:
        claimed: True when this call performed the label walk
        from_label: Trigger label that was observed (None if none was recognized)
        to_label: In-progress label applied (None unless claimed)
    """

    claimed: bool
    from_label: str | None = None
    to_label: str | None = None

    @property
    def phase(self) -> str | None:
        """Phase implied by the applied label."""
        return PHASE_FOR_LABEL.get(self.to_label or "")


class LabelTransitionEngine:
    """Performs claim-and-advance label walks against GitHub."""

    def __init__(self, client: GitHubClient, repo: str) -> None:
        self.client = client
        self.repo = repo

    @staticmethod
    def next_label(label: str) -> str | None:
        """Return the in-progress label that follows a trigger label."""
        return TRANSITIONS.get(label)

    def claim_and_advance(
        self, number: int, observed_labels: set[str] | frozenset[str]
    ) -> TransitionResult:
        """Claim an item by swapping its trigger label for the in-progress label.

        Args:
            number: Issue or pull request number
            observed_labels: Labels seen in this tick's snapshot

        Returns:
            TransitionResult; claimed=False when the item carries no trigger
            label or the live labels show it was already advanced.

        Raises:
            GitHubError: If reading or mutating labels fails. A failure after
                the add leaves both labels on the item; the next tick sees
                the in-progress label and does not claim again.
        """
        from_label = find_trigger_label(observed_labels)
        if from_label is None:
            logger.debug(f"Skipping #{number}: no claimable label in {sorted(observed_labels)}")
            return TransitionResult(claimed=False)

        to_label = TRANSITIONS[from_label]

        live_labels = self.client.get_issue_labels(self.repo, number)
        if from_label not in live_labels or live_labels & IN_PROGRESS_LABELS:
            logger.info(
                f"Skipping #{number}: already advanced (live labels {sorted(live_labels)})"
            )
            record_claim("conflict")
            return TransitionResult(claimed=False, from_label=from_label)

        try:
            transition = self.client.transition_issue_label_with_info(
                self.repo, number, from_label, to_label
            )
        except Exception:
            record_claim("error")
            raise

        if not transition.transitioned:
            record_claim("error")
            return TransitionResult(claimed=False, from_label=from_label)

        logger.info(f"Claimed #{number}: {from_label} -> {to_label}")
        record_claim("claimed")
        return TransitionResult(claimed=True, from_label=from_label, to_label=to_label)

    def claim_revision(
        self, pr_number: int, observed_pr_labels: set[str] | frozenset[str], issue_number: int
    ) -> TransitionResult:
        """Claim a requires-changes review for the issue a pull request closes.

        The issue gets status:revising (dropping requires-changes and reviewing),
        then requires-changes is removed from the PR.

        Args:
            pr_number: Pull request carrying the review outcome
            observed_pr_labels: PR labels seen in this tick's snapshot
            issue_number: Issue closed by the pull request

        Returns:
            TransitionResult; claimed=False when the PR no longer carries
            requires-changes or the issue is already revising.

        Raises:
            GitHubError: If reading or mutating labels fails. A failure after
                the issue was advanced leaves it revising, so the next tick
                does not claim again.
        """
        trigger = Labels.REQUIRES_CHANGES
        if trigger not in observed_pr_labels:
            return TransitionResult(claimed=False)

        live_pr_labels = self.client.get_issue_labels(self.repo, pr_number)
        issue_labels = self.client.get_issue_labels(self.repo, issue_number)
        if trigger not in live_pr_labels or Labels.REVISING in issue_labels:
            logger.info(
                f"Skipping revise of #{issue_number} via PR #{pr_number}: already claimed "
                f"(PR labels {sorted(live_pr_labels)}, issue labels {sorted(issue_labels)})"
            )
            record_claim("conflict")
            return TransitionResult(claimed=False, from_label=trigger)

        try:
            self.client.add_label(self.repo, issue_number, Labels.REVISING)
            for stale in (trigger, Labels.REVIEWING):
                if stale in issue_labels:
                    self.client.remove_label(self.repo, issue_number, stale)
            self.client.remove_label(self.repo, pr_number, trigger)
        except Exception:
            record_claim("error")
            raise

        logger.info(f"Claimed revise of #{issue_number} from PR #{pr_number}")
        record_claim("claimed")
        return TransitionResult(claimed=True, from_label=trigger, to_label=Labels.REVISING)
