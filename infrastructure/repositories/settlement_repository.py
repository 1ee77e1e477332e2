"""
结算账本仓储实现 - 使用SQLAlchemy实现数据访问

Every write is a single statement keyed on the unique processor_payment_ref
index. Status columns are written through CASE guards that encode the same
transition graph as the domain, so two writers racing on one ref can never
move a record backwards.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConfigurationException, SettlementNotFoundException
from domain.settlement.entity import (
    PaymentStatus,
    PayoutStatus,
    SettlementPatch,
    SettlementRecord,
    payment_predecessors,
    payout_predecessors,
)
from domain.settlement.repository import SettlementRepository, SettlementTotals
from infrastructure.models import SettlementModel, utcnow


logger = get_logger(__name__)

settlements = SettlementModel.__table__

_GUARDED = ("payment_status", "payout_status", "payout_failed_reason")


class SQLAlchemySettlementRepository(SettlementRepository):
    """结算仓储的SQLAlchemy实现（PostgreSQL / SQLite）"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SettlementModel) -> SettlementRecord:
        return SettlementRecord(
            id=model.id,
            processor_payment_ref=model.processor_payment_ref,
            booking_ref=model.booking_ref,
            booking_request_ref=model.booking_request_ref,
            coach_ref=model.coach_ref,
            athlete_ref=model.athlete_ref,
            total_amount_cents=model.total_amount_cents,
            platform_fee_cents=model.platform_fee_cents,
            coach_amount_cents=model.coach_amount_cents,
            processor_fee_cents=model.processor_fee_cents or 0,
            athlete_fee_cents=model.athlete_fee_cents or 0,
            payment_status=PaymentStatus(model.payment_status),
            payout_status=PayoutStatus(model.payout_status),
            payout_failed_reason=model.payout_failed_reason,
            payout_retry_count=model.payout_retry_count or 0,
            transfer_ref=model.transfer_ref,
            charge_ref=model.charge_ref,
            currency=model.currency,
            description=model.description,
            customer_email=model.customer_email,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(settlements)
        if dialect == "sqlite":
            return sqlite_insert(settlements)
        raise ConfigurationException(f"Unsupported database dialect for settlements: {dialect}", setting="database.url")

    @staticmethod
    def _guarded_values(values: Dict[str, Any], source) -> Dict[str, Any]:
        """
        SET expressions for a patch.

        ``source`` is the row of new values: ``excluded`` for the conflict
        branch of an insert, plain literals for an update.
        """
        set_: Dict[str, Any] = {}
        for name in values:
            if name in _GUARDED:
                continue
            set_[name] = source(name)

        if "payment_status" in values:
            allowed = [s.value for s in payment_predecessors(PaymentStatus(values["payment_status"]))]
            set_["payment_status"] = case(
                (settlements.c.payment_status.in_(allowed), source("payment_status")),
                else_=settlements.c.payment_status,
            )

        payout_allowed: Optional[List[str]] = None
        if "payout_status" in values:
            payout_allowed = [s.value for s in payout_predecessors(PayoutStatus(values["payout_status"]))]
            set_["payout_status"] = case(
                (settlements.c.payout_status.in_(payout_allowed), source("payout_status")),
                else_=settlements.c.payout_status,
            )

        if "payout_failed_reason" in values:
            # the reason only lands together with the payout status it explains
            if payout_allowed is None:
                set_["payout_failed_reason"] = source("payout_failed_reason")
            else:
                set_["payout_failed_reason"] = case(
                    (settlements.c.payout_status.in_(payout_allowed), source("payout_failed_reason")),
                    else_=settlements.c.payout_failed_reason,
                )
        return set_

    @staticmethod
    def _changes(set_: Dict[str, Any]):
        return or_(*[settlements.c[name].is_distinct_from(expr) for name, expr in set_.items()])

    async def _select_by_ref(self, ref: str) -> Optional[SettlementModel]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(SettlementModel.processor_payment_ref == ref)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_settlement(self, ref: str, patch: SettlementPatch) -> SettlementRecord:
        values = patch.values()
        now = utcnow()

        if patch.can_create:
            # validates the split before it reaches the table constraints
            SettlementRecord(id=None, processor_payment_ref=ref, **values)
            row = {
                "payment_status": PaymentStatus.PENDING.value,
                "payout_status": PayoutStatus.UNKNOWN.value,
                "payout_retry_count": 0,
                "processor_fee_cents": 0,
                "athlete_fee_cents": 0,
                "currency": "usd",
                **values,
                "processor_payment_ref": ref,
                "created_at": now,
                "updated_at": now,
            }
            stmt = self._insert().values(**row)
            set_ = self._guarded_values(values, lambda name: stmt.excluded[name])
            if set_:
                stmt = stmt.on_conflict_do_update(
                    index_elements=[settlements.c.processor_payment_ref],
                    set_={**set_, "updated_at": now},
                    where=self._changes(set_),
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=[settlements.c.processor_payment_ref])
            result = await self.session.execute(stmt)
        else:
            if not values:
                model = await self._select_by_ref(ref)
                if model is None:
                    raise SettlementNotFoundException(ref)
                return self._to_entity(model)
            set_ = self._guarded_values(values, lambda name: values[name])
            result = await self.session.execute(
                update(settlements)
                .where(settlements.c.processor_payment_ref == ref, self._changes(set_))
                .values(**set_, updated_at=now)
            )

        model = await self._select_by_ref(ref)
        if model is None:
            raise SettlementNotFoundException(ref)

        logger.info(
            "settlement_upserted",
            processor_payment_ref=ref,
            changed=bool(result.rowcount),
            fields=sorted(values),
            payment_status=model.payment_status,
            payout_status=model.payout_status,
        )
        return self._to_entity(model)

    async def get_by_payment_ref(self, ref: str) -> Optional[SettlementRecord]:
        model = await self._select_by_ref(ref)
        return self._to_entity(model) if model else None

    async def get_by_transfer_ref(self, transfer_ref: str) -> Optional[SettlementRecord]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(SettlementModel.transfer_ref == transfer_ref)
            .execution_options(populate_existing=True)
        )
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def get_by_charge_ref(self, charge_ref: str) -> Optional[SettlementRecord]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(SettlementModel.charge_ref == charge_ref)
            .execution_options(populate_existing=True)
        )
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def get_latest_for_booking(self, correlation_ref: str) -> Optional[SettlementRecord]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(or_(
                SettlementModel.booking_ref == correlation_ref,
                SettlementModel.booking_request_ref == correlation_ref,
            ))
            .order_by(SettlementModel.created_at.desc(), SettlementModel.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def list_by_payout_status(
        self,
        status: PayoutStatus,
        skip: int = 0,
        limit: int = 100,
    ) -> List[SettlementRecord]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(SettlementModel.payout_status == PayoutStatus(status).value)
            .order_by(SettlementModel.updated_at.asc(), SettlementModel.id.asc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_recent(self, skip: int = 0, limit: int = 100) -> List[SettlementRecord]:
        result = await self.session.execute(
            select(SettlementModel)
            .order_by(SettlementModel.created_at.desc(), SettlementModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def summarize(self) -> SettlementTotals:
        succeeded = SettlementModel.payment_status == PaymentStatus.SUCCEEDED.value

        def _sum_if(condition, column):
            return func.coalesce(func.sum(case((condition, column), else_=0)), 0)

        def _count_if(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        result = await self.session.execute(
            select(
                func.count(SettlementModel.id),
                _sum_if(succeeded, SettlementModel.total_amount_cents),
                _sum_if(succeeded, SettlementModel.platform_fee_cents),
                _sum_if(SettlementModel.payout_status == PayoutStatus.PAID.value, SettlementModel.coach_amount_cents),
                _count_if(SettlementModel.payout_status.in_(
                    [PayoutStatus.PENDING.value, PayoutStatus.IN_TRANSIT.value]
                )),
                _count_if(SettlementModel.payout_status == PayoutStatus.FAILED.value),
            )
        )
        row = result.one()
        return SettlementTotals(
            record_count=int(row[0] or 0),
            gross_revenue_cents=int(row[1] or 0),
            platform_fee_cents=int(row[2] or 0),
            coach_paid_out_cents=int(row[3] or 0),
            pending_payouts=int(row[4] or 0),
            failed_payouts=int(row[5] or 0),
        )

    async def mark_payout_retried(
        self,
        ref: str,
        *,
        expected_retry_count: int,
        transfer_ref: Optional[str],
    ) -> bool:
        result = await self.session.execute(
            update(settlements)
            .where(
                settlements.c.processor_payment_ref == ref,
                settlements.c.payout_status == PayoutStatus.FAILED.value,
                settlements.c.payout_retry_count == expected_retry_count,
            )
            .values(
                payout_status=PayoutStatus.PENDING.value,
                payout_retry_count=expected_retry_count + 1,
                payout_failed_reason=None,
                transfer_ref=transfer_ref,
                updated_at=utcnow(),
            )
        )
        applied = result.rowcount == 1
        logger.info(
            "settlement_payout_retried",
            processor_payment_ref=ref,
            applied=applied,
            attempt=expected_retry_count + 1,
            transfer_ref=transfer_ref,
        )
        return applied

    async def record_orphaned_transfer(self, ref: str, transfer_ref: str) -> bool:
        result = await self.session.execute(
            update(settlements)
            .where(
                settlements.c.processor_payment_ref == ref,
                settlements.c.transfer_ref.is_distinct_from(transfer_ref),
            )
            .values(
                transfer_ref=transfer_ref,
                payout_retry_count=settlements.c.payout_retry_count + 1,
                updated_at=utcnow(),
            )
        )
        recorded = result.rowcount == 1
        if recorded:
            logger.warning("payout_retry_orphaned", processor_payment_ref=ref, transfer_ref=transfer_ref)
        return recorded
