from typing import Dict, Iterable, List, Set
from models.schemas import IssueLabel, IssueOccurrence
import config as cfg


class IssuePersistenceFilter:
    """
    Debounces transient issues.

    An issue is tracked from the first sample it appears in and forgotten the
    moment a sample arrives without it, so a recurrence starts a new
    occurrence. Each occurrence is confirmed (counted) at most once, after it
    has been present for min_duration_ms.
    """

    def __init__(self, min_duration_ms: float = cfg.ISSUE_MIN_DURATION_MS):
        self.min_duration_ms = min_duration_ms
        self.occurrences: Dict[IssueLabel, IssueOccurrence] = {}
        self.confirmed: Set[IssueLabel] = set()

    def _persisted(self, label: IssueLabel, now_ms: float) -> bool:
        occurrence = self.occurrences.get(label)
        return occurrence is not None and now_ms - occurrence.first_observed_at >= self.min_duration_ms

    def update(self, issues: Iterable[IssueLabel], now_ms: float) -> List[IssueLabel]:
        """Feed the current sample's issues; returns labels confirmed for the first time."""
        current = list(dict.fromkeys(issues))

        for label in current:
            if label not in self.occurrences:
                self.occurrences[label] = IssueOccurrence(label=label, first_observed_at=now_ms)

        for label in list(self.occurrences):
            if label not in current:
                del self.occurrences[label]

        newly_confirmed = [
            label for label in current
            if self._persisted(label, now_ms) and label not in self.confirmed
        ]
        self.confirmed = {label for label in current if self._persisted(label, now_ms)}
        return newly_confirmed

    def reset(self):
        self.occurrences.clear()
        self.confirmed = set()
