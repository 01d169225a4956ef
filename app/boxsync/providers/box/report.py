from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .models import Action, action_name

APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outcome:
    status: str
    action: str
    reason: str = ""


class SyncResult:
    """Per-path outcomes of one push/fetch.

    Outcomes are keyed by relative path, so totals and listings do not depend
    on the order actions finished in.
    """

    def __init__(
        self,
        direction: str = "",
        on_outcome: Optional[Callable[[str, Outcome], None]] = None,
    ):
        self.direction = direction
        self.on_outcome = on_outcome
        self.outcomes: dict[str, Outcome] = {}
        self._lock = threading.Lock()

    def record(self, action: Action, status: str, reason: str = "") -> Outcome:
        outcome = Outcome(status=status, action=action_name(action), reason=reason)
        with self._lock:
            self.outcomes[action.relative_path] = outcome
        if self.on_outcome is not None:
            try:
                self.on_outcome(action.relative_path, outcome)
            except Exception:
                logger.exception("on_outcome_failed path=%s status=%s", action.relative_path, status)
        return outcome

    def applied(self) -> list[str]:
        return sorted(p for p, o in self.outcomes.items() if o.status == APPLIED)

    def skipped(self) -> list[tuple[str, str]]:
        return sorted((p, o.reason) for p, o in self.outcomes.items() if o.status == SKIPPED)

    def failures(self) -> list[tuple[str, str]]:
        return sorted((p, o.reason) for p, o in self.outcomes.items() if o.status == FAILED)

    def failed_paths(self) -> list[str]:
        return [p for p, _reason in self.failures()]

    def counts(self) -> dict[str, int]:
        out = {APPLIED: 0, SKIPPED: 0, FAILED: 0}
        for outcome in self.outcomes.values():
            out[outcome.status] += 1
        return out

    @property
    def ok(self) -> bool:
        return self.counts()[FAILED] == 0

    def __getitem__(self, rel_path: str) -> Outcome:
        return self.outcomes[rel_path]

    def __contains__(self, rel_path: str) -> bool:
        return rel_path in self.outcomes

    def __len__(self) -> int:
        return len(self.outcomes)

    def summary(self) -> dict:
        counts = self.counts()
        by_action: dict[str, int] = {}
        for outcome in self.outcomes.values():
            if outcome.status == APPLIED:
                by_action[outcome.action] = by_action.get(outcome.action, 0) + 1
        return {
            "direction": self.direction,
            "total": len(self.outcomes),
            **counts,
            "applied_by_action": dict(sorted(by_action.items())),
            "failures": [{"path": p, "reason": r} for p, r in self.failures()],
        }

    def render_lines(self) -> list[str]:
        counts = self.counts()
        lines = [
            f"{self.direction or 'sync'}: {counts[APPLIED]} applied, "
            f"{counts[SKIPPED]} skipped, {counts[FAILED]} failed"
        ]
        for path, reason in self.failures():
            lines.append(f"  FAILED {path}: {reason}")
        return lines
