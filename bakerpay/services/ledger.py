"""Payout ledger: one run row per processed payout, one entry per delegator."""

from collections.abc import Callable
from contextlib import AbstractContextManager

import structlog
from sqlalchemy import Select, and_, func, select
from sqlalchemy.orm import Session, selectinload

from bakerpay.services._helpers import JsonDict, dump_json, load_json, new_id, now_iso
from bakerpay.services._types import PayoutEntryDict, PayoutRunDetailDict, PayoutRunDict
from bakerpay.services.schemas import Payout, PayoutResult
from db.enums import PaymentStatus, RunStatus
from db.models import PayoutEntries, PayoutRuns

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# Statuses that mean a cycle needs no further payment.
PAID_STATUSES: tuple[str, ...] = (RunStatus.SUCCESS.value, RunStatus.EMPTY.value)

SessionScope = Callable[[], AbstractContextManager[Session]]


def run_status(result: PayoutResult) -> RunStatus:
    if not result.success:
        return RunStatus.FAILED
    if result.dry_run:
        return RunStatus.DRY_RUN
    if result.empty:
        return RunStatus.EMPTY
    return RunStatus.SUCCESS


class PayoutLedger:
    """Records payout results and answers "was this cycle paid?"."""

    def __init__(self, session: Session) -> None:
        self.session: Session = session

    def _entries(self, run_id: str, result: PayoutResult, status: RunStatus) -> list[PayoutEntries]:
        payout: Payout | None = result.payout
        if payout is None:
            return []

        paid_as: PaymentStatus = {
            RunStatus.SUCCESS: PaymentStatus.SENT,
            RunStatus.DRY_RUN: PaymentStatus.PLANNED,
        }.get(status, PaymentStatus.NOT_SENT)

        rows: list[PayoutEntries] = [
            PayoutEntries(
                id=new_id(),
                run_id=run_id,
                delegator=e.delegator,
                gross_rewards=e.gross_rewards,
                fee=e.fee,
                net_rewards=e.net_rewards,
                share=e.share,
                counter=result.counters.get(e.delegator),
                payment_status=paid_as.value,
            )
            for e in payout.earnings
        ]
        rows.extend(
            PayoutEntries(
                id=new_id(),
                run_id=run_id,
                delegator=x.earning.delegator,
                gross_rewards=x.earning.gross_rewards,
                fee=x.earning.fee,
                net_rewards=x.earning.net_rewards,
                share=x.earning.share,
                payment_status=PaymentStatus.EXCLUDED.value,
                excluded_reason=x.reason,
            )
            for x in payout.excluded
        )
        return rows

    def record_result(
        self, result: PayoutResult, config_snapshot: JsonDict | None = None
    ) -> PayoutRuns:
        status: RunStatus = run_status(result)
        payout: Payout | None = result.payout
        run: PayoutRuns = PayoutRuns(
            run_id=new_id(),
            delegate=result.delegate,
            cycle=result.cycle,
            status=status.value,
            operation_hash=result.operation_hash,
            error_details=result.error,
            starting_counter=result.starting_counter,
            frozen_rewards=payout.frozen_balance.rewards if payout else 0,
            staking_balance=payout.staking_balance if payout else 0,
            total_gross=payout.total_gross if payout else 0,
            total_fee=payout.total_fee if payout else 0,
            total_net=payout.total_net if payout else 0,
            delegator_count=len(payout.earnings) if payout else 0,
            config_snapshot=dump_json(config_snapshot) if config_snapshot else None,
            created_at=now_iso(),
        )
        self.session.add(run)
        self.session.add_all(self._entries(run.run_id, result, status))
        self.session.flush()

        logger.info(
            "Payout run recorded",
            run_id=run.run_id,
            cycle=result.cycle,
            status=status.value,
            operation_hash=result.operation_hash,
        )
        return run

    def is_cycle_paid(self, delegate: str, cycle: int) -> bool:
        stmt = (
            select(func.count())
            .select_from(PayoutRuns)
            .where(
                and_(
                    PayoutRuns.delegate == delegate,
                    PayoutRuns.cycle == cycle,
                    PayoutRuns.status.in_(PAID_STATUSES),
                )
            )
        )
        return (self.session.scalar(stmt) or 0) > 0

    def last_paid_cycle(self, delegate: str) -> int | None:
        stmt = select(func.max(PayoutRuns.cycle)).where(
            and_(PayoutRuns.delegate == delegate, PayoutRuns.status.in_(PAID_STATUSES))
        )
        return self.session.scalar(stmt)

    def list_runs(self, limit: int = 20, delegate: str | None = None) -> list[PayoutRunDict]:
        stmt: Select[tuple[PayoutRuns]] = select(PayoutRuns)
        if delegate:
            stmt = stmt.where(PayoutRuns.delegate == delegate)
        stmt = stmt.order_by(PayoutRuns.created_at.desc(), PayoutRuns.cycle.desc()).limit(limit)
        return [self._run_to_dict(r) for r in self.session.scalars(stmt).all()]

    def get_run(self, run_id: str) -> PayoutRunDetailDict | None:
        stmt: Select[tuple[PayoutRuns]] = (
            select(PayoutRuns)
            .where(PayoutRuns.run_id == run_id)
            .options(selectinload(PayoutRuns.entries))
        )
        run: PayoutRuns | None = self.session.scalar(stmt)
        if run is None:
            return None
        detail: PayoutRunDetailDict = {
            **self._run_to_dict(run),
            "entries": [self._entry_to_dict(e) for e in run.entries],
        }
        return detail

    @staticmethod
    def _run_to_dict(r: PayoutRuns) -> PayoutRunDict:
        return {
            "run_id": r.run_id,
            "delegate": r.delegate,
            "cycle": r.cycle,
            "status": r.status,
            "operation_hash": r.operation_hash,
            "error_details": r.error_details,
            "starting_counter": r.starting_counter,
            "frozen_rewards": r.frozen_rewards,
            "staking_balance": r.staking_balance,
            "total_gross": r.total_gross,
            "total_fee": r.total_fee,
            "total_net": r.total_net,
            "delegator_count": r.delegator_count,
            "config_snapshot": load_json(r.config_snapshot),
            "created_at": r.created_at,
        }

    @staticmethod
    def _entry_to_dict(e: PayoutEntries) -> PayoutEntryDict:
        return {
            "delegator": e.delegator,
            "gross_rewards": e.gross_rewards,
            "fee": e.fee,
            "net_rewards": e.net_rewards,
            "share": e.share,
            "counter": e.counter,
            "payment_status": e.payment_status,
            "excluded_reason": e.excluded_reason,
        }


def ledger_observer(
    session_scope: SessionScope, config_snapshot: JsonDict | None = None
) -> Callable[[PayoutResult], None]:
    """Queue observer that records each result in its own transaction."""

    def record(result: PayoutResult) -> None:
        with session_scope() as session:
            PayoutLedger(session).record_result(result, config_snapshot)

    return record
