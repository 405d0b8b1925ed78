"""Run Gate: decides whether a caller may execute a fulfillment side effect.

State Machine (ledger row status):
    (none) → started            first acquisition
    started → ok | error        mark_ok / mark_error
    error → started             retry re-acquires
    started (stale) → started   takeover, only when enabled
    ok                          terminal

Gate outcomes:
    ACQUIRED           caller owns the run and must mark it ok or error
    ALREADY_PROCESSED  the run finished; replay is a no-op
    IN_PROGRESS        another caller owns a live run
    UNAVAILABLE        the ledger could not answer, for any reason
"""

from dataclasses import dataclass
from enum import Enum

import structlog

from shared.ledger.store import FulfillmentRunStore, RunStatus
from shared.settings import RunGateSettings

logger = structlog.get_logger(__name__)


class RunGateState(Enum):
    ACQUIRED = "acquired"
    ALREADY_PROCESSED = "alreadyProcessed"
    IN_PROGRESS = "inProgress"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class RunGateResult:
    state: RunGateState
    existing_status: str | None = None

    @property
    def acquired(self) -> bool:
        return self.state is RunGateState.ACQUIRED

    @property
    def is_replay(self) -> bool:
        """True when the side effect must be skipped without raising an error."""
        return self.state in (RunGateState.ALREADY_PROCESSED, RunGateState.IN_PROGRESS)


class RunGate:
    """Idempotency gate over a ``FulfillmentRunStore``."""

    def __init__(self, store: FulfillmentRunStore, settings: RunGateSettings | None = None) -> None:
        self.store = store
        self.settings = settings or RunGateSettings()

    async def try_acquire(self, chain_id: int, seller: str, payment_reference: str, order_id: str) -> RunGateResult:
        try:
            acquired, status = await self.store.try_begin(
                chain_id,
                seller,
                payment_reference,
                order_id,
                allow_started_takeover=self.settings.allow_started_takeover,
                stale_minutes=self.settings.stale_minutes,
            )
        except Exception:
            logger.exception(
                "Fulfillment ledger unavailable",
                chain_id=chain_id,
                seller=seller,
                payment_reference=payment_reference,
            )
            return RunGateResult(RunGateState.UNAVAILABLE)

        if acquired:
            return RunGateResult(RunGateState.ACQUIRED, status)

        if status == RunStatus.OK.value:
            return RunGateResult(RunGateState.ALREADY_PROCESSED, status)
        if status == RunStatus.STARTED.value:
            return RunGateResult(RunGateState.IN_PROGRESS, status)

        logger.warning(
            "Fulfillment run in unexpected state",
            chain_id=chain_id,
            seller=seller,
            payment_reference=payment_reference,
            status=status,
        )
        return RunGateResult(RunGateState.UNAVAILABLE, status)

    async def mark_ok(self, chain_id: int, seller: str, payment_reference: str) -> bool:
        try:
            return await self.store.mark_ok(chain_id, seller, payment_reference)
        except Exception:
            # The row stays 'started'; stale takeover or a later mark recovers it.
            logger.exception("Failed to mark fulfillment run ok", payment_reference=payment_reference)
            return False

    async def mark_error(self, chain_id: int, seller: str, payment_reference: str, detail: str) -> bool:
        try:
            return await self.store.mark_error(chain_id, seller, payment_reference, detail)
        except Exception:
            logger.exception("Failed to mark fulfillment run error", payment_reference=payment_reference)
            return False

    async def set_detail(self, chain_id: int, seller: str, payment_reference: str, detail: dict) -> bool:
        try:
            await self.store.set_detail(chain_id, seller, payment_reference, detail)
            return True
        except Exception:
            logger.exception("Failed to record fulfillment run detail", payment_reference=payment_reference)
            return False
