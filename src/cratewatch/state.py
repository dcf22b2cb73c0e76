# src/cratewatch/state.py
#
"""
Outcome state of a single test run.
"""

from datetime import UTC, datetime
from enum import Enum, auto

import structlog
from attrs import field, mutable

from cratewatch.model import TestLikeNode

# Logger specific to state management
log: structlog.stdlib.BoundLogger = structlog.get_logger("state")


class TestOutcome(Enum):
    """Last known result of a test or module in a run."""

    __test__ = False

    ENQUEUED = auto()  # Requested, no result line seen yet.
    PASSED = auto()
    FAILED = auto()
    SKIPPED = auto()  # Reported as `ignored` by the test harness.

    @property
    def emoji(self) -> str:
        return OUTCOME_EMOJI_MAP[self]

    @property
    def style(self) -> str:
        return OUTCOME_STYLE_MAP[self]


OUTCOME_EMOJI_MAP = {
    TestOutcome.ENQUEUED: "⏳",
    TestOutcome.PASSED: "✅",
    TestOutcome.FAILED: "❌",
    TestOutcome.SKIPPED: "⏭️",
}

OUTCOME_STYLE_MAP = {
    TestOutcome.ENQUEUED: "dim",
    TestOutcome.PASSED: "green",
    TestOutcome.FAILED: "bold red",
    TestOutcome.SKIPPED: "yellow",
}


@mutable(slots=True)
class TestRunState:
    """
    Records what a run reported, per node and overall.

    Implements the `TestRun` callbacks the output analyzer drives. Nodes are
    tracked by identity, so a node recreated by a model refresh starts with no
    outcome.
    """

    __test__ = False

    outcomes: dict[TestLikeNode, TestOutcome] = field(factory=dict)
    messages: dict[TestLikeNode, str] = field(factory=dict)
    output: list[str] = field(factory=list)
    started_at: datetime = field(factory=lambda: datetime.now(UTC))
    ended_at: datetime | None = field(default=None)

    @property
    def ended(self) -> bool:
        return self.ended_at is not None

    def _record(self, node: TestLikeNode, outcome: TestOutcome) -> None:
        if self.ended:
            log.warning("Outcome reported after the run ended", node=node.name, outcome=outcome.name)
        self.outcomes[node] = outcome

    def enqueued(self, node: TestLikeNode) -> None:
        self._record(node, TestOutcome.ENQUEUED)

    def passed(self, node: TestLikeNode) -> None:
        self._record(node, TestOutcome.PASSED)

    def failed(self, node: TestLikeNode, message: str | None = None) -> None:
        self._record(node, TestOutcome.FAILED)
        if message is not None:
            self.messages[node] = message

    def skipped(self, node: TestLikeNode) -> None:
        self._record(node, TestOutcome.SKIPPED)

    def append_output(self, text: str) -> None:
        self.output.append(text)

    def end(self) -> None:
        if self.ended:
            return
        self.ended_at = datetime.now(UTC)
        log.debug("Run ended", results=self.summary())

    # --- Queries ---
    def outcome_of(self, node: TestLikeNode) -> TestOutcome | None:
        return self.outcomes.get(node)

    def message_of(self, node: TestLikeNode) -> str | None:
        return self.messages.get(node)

    @property
    def output_text(self) -> str:
        return "".join(self.output)

    def summary(self) -> dict[str, int]:
        """Counts per outcome name, zero counts included."""
        counts = {outcome.name.lower(): 0 for outcome in TestOutcome}
        for outcome in self.outcomes.values():
            counts[outcome.name.lower()] += 1
        return counts
