"""Per-line outcomes of a lifecycle run, collected into a batch report."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OutcomeKind(Enum):
    DISPATCHED = "dispatched"
    REPLAYED = "replayed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class LineOutcome:
    order_id: str
    line_index: int
    kind: OutcomeKind
    reason: str | None = None
    chain_id: int | None = None
    seller: str | None = None
    sku: str | None = None
    endpoint: str | None = None
    detail: str | None = None
    http_status: int | None = None
    payload: Any = None

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "lineIndex": self.line_index,
            "outcome": self.kind.value,
            "reason": self.reason,
            "chainId": self.chain_id,
            "seller": self.seller,
            "sku": self.sku,
            "detail": self.detail,
        }


@dataclass
class BatchReport:
    payment_reference: str
    trigger: str
    outcomes: list[LineOutcome] = field(default_factory=list)
    error: str | None = None

    def add(self, outcome: LineOutcome) -> LineOutcome:
        self.outcomes.append(outcome)
        return outcome

    def of_kind(self, kind: OutcomeKind) -> list[LineOutcome]:
        return [o for o in self.outcomes if o.kind is kind]

    @property
    def dispatched(self) -> list[LineOutcome]:
        return self.of_kind(OutcomeKind.DISPATCHED)

    @property
    def replayed(self) -> list[LineOutcome]:
        return self.of_kind(OutcomeKind.REPLAYED)

    @property
    def skipped(self) -> list[LineOutcome]:
        return self.of_kind(OutcomeKind.SKIPPED)

    @property
    def failed(self) -> list[LineOutcome]:
        return self.of_kind(OutcomeKind.FAILED)

    def counts(self) -> dict[str, int]:
        return {kind.value: len(self.of_kind(kind)) for kind in OutcomeKind}

    def to_dict(self) -> dict:
        return {
            "paymentReference": self.payment_reference,
            "trigger": self.trigger,
            "counts": self.counts(),
            "lines": [o.to_dict() for o in self.outcomes],
            "error": self.error,
        }
