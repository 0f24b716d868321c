"""SQLAlchemy ORM models for the payout ledger."""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import BigInteger, ForeignKey, MetaData, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)

    def to_dict(self) -> dict[str, Any]:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


def generate_uuid() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


class PayoutRuns(Base):
    __tablename__ = "payout_runs"

    run_id: Mapped[str] = mapped_column(primary_key=True, default=generate_uuid)
    delegate: Mapped[str] = mapped_column(nullable=False, index=True)
    cycle: Mapped[int] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(nullable=False)
    operation_hash: Mapped[str | None] = mapped_column()
    error_details: Mapped[str | None] = mapped_column()
    starting_counter: Mapped[int | None] = mapped_column(BigInteger)
    frozen_rewards: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    staking_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_gross: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_net: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    delegator_count: Mapped[int] = mapped_column(nullable=False, default=0)
    config_snapshot: Mapped[str | None] = mapped_column()
    created_at: Mapped[str] = mapped_column(nullable=False)
    entries = relationship(
        "PayoutEntries",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="PayoutEntries.delegator",
    )


class PayoutEntries(Base):
    __tablename__ = "payout_entries"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_uuid)
    run_id: Mapped[str] = mapped_column(
        ForeignKey("payout_runs.run_id", ondelete="CASCADE"), nullable=False
    )
    delegator: Mapped[str] = mapped_column(nullable=False)
    gross_rewards: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    net_rewards: Mapped[int] = mapped_column(BigInteger, nullable=False)
    share: Mapped[float] = mapped_column(nullable=False)
    counter: Mapped[int | None] = mapped_column(BigInteger)
    payment_status: Mapped[str] = mapped_column(nullable=False)
    excluded_reason: Mapped[str | None] = mapped_column()
    run = relationship("PayoutRuns", back_populates="entries")

    __table_args__ = (UniqueConstraint("run_id", "delegator"),)
