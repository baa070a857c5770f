"""
Admission control.

Decides whether a ranked target may become a position. Checks run in a fixed
order and stop at the first failure:
- an active position already exists for the subject
- the active position count has reached the maximum
- the target's priority is below the execution floor
- the global cooldown since the last opened position has not elapsed
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from ..config import TradingSettings
from ..models import Position, Target
from ..utils.logger import TradeLogger
from ..utils.notifier import LogNotifier, Notifier


class DenyReason(Enum):
    """Why a target was not admitted."""
    EXISTING_POSITION = "existing position"
    MAX_POSITIONS = "max positions"
    LOW_PRIORITY = "priority below execution floor"
    COOLDOWN = "cooldown"


@dataclass
class AdmissionDecision:
    """Result of an admission check."""
    allowed: bool
    reason: Optional[DenyReason] = None
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }


class AdmissionController:
    """Gate between the target ranking and position execution."""

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time
    ):
        self.notifier = notifier or LogNotifier()
        self.clock = clock
        self.trade_logger = TradeLogger()

    def evaluate(
        self,
        target: Target,
        positions: Iterable[Position],
        settings: TradingSettings,
        now: Optional[float] = None
    ) -> AdmissionDecision:
        """
        Decide admission for one target.

        Args:
            target: Ranked target
            positions: Every known position, any state
            settings: Trading settings of the current cycle
            now: Decision time; defaults to the clock

        Returns:
            AdmissionDecision; never raises
        """
        now = self.clock() if now is None else now
        positions = list(positions)
        active = [p for p in positions if p.is_active]

        if any(p.subject_id == target.subject_id for p in active):
            return AdmissionDecision(
                allowed=False,
                reason=DenyReason.EXISTING_POSITION,
                detail=f"{target.symbol} already has an active position"
            )

        if len(active) >= settings.max_positions:
            return AdmissionDecision(
                allowed=False,
                reason=DenyReason.MAX_POSITIONS,
                detail=f"{len(active)}/{settings.max_positions} positions active"
            )

        if target.priority < settings.execution_floor:
            return AdmissionDecision(
                allowed=False,
                reason=DenyReason.LOW_PRIORITY,
                detail=f"priority {target.priority:.1f} < {settings.execution_floor:.1f}"
            )

        if positions:
            last_opened = max(p.opened_at for p in positions)
            elapsed_ms = (now - last_opened) * 1000
            cooldown_ms = settings.sniper.cooldown_ms
            if elapsed_ms < cooldown_ms:
                return AdmissionDecision(
                    allowed=False,
                    reason=DenyReason.COOLDOWN,
                    detail=f"{elapsed_ms:.0f}ms since last position, cooldown {cooldown_ms}ms"
                )

        return AdmissionDecision(allowed=True)

    async def announce(self, target: Target, decision: AdmissionDecision) -> None:
        """Report a decision: denials to the log, admissions to the notifier."""
        if not decision.allowed:
            self.trade_logger.admission_denied(
                target.subject_id,
                decision.reason.value if decision.reason else "",
                decision.detail
            )
            return

        await self.notifier.notify(
            "target_admitted",
            f"Sniping {target.symbol}",
            subject_id=target.subject_id,
            priority=round(target.priority, 1),
            rationale=target.rationale
        )
