"""Business tables populated from contract spreadsheets."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import RAW_SCHEMA, Base

Money = Numeric(12, 0)


def _artifact_fk() -> Mapped[int]:
    return mapped_column(
        ForeignKey(f"{RAW_SCHEMA}.artifact_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class ContractCreation(Base):
    """New contracts exported from the property management system."""

    __tablename__ = "contract_creation"
    __table_args__ = {"schema": RAW_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artifact_id: Mapped[int] = _artifact_fk()
    contract_id: Mapped[str] = mapped_column(Text, nullable=False)
    property_no: Mapped[int | None] = mapped_column(Integer)
    room_no: Mapped[int | None] = mapped_column(Integer)
    contractor_no: Mapped[int | None] = mapped_column(Integer)
    reference_id: Mapped[int | None] = mapped_column(Integer)
    property_name: Mapped[str | None] = mapped_column(Text)
    contractor_name: Mapped[str | None] = mapped_column(Text)
    contract_status: Mapped[str | None] = mapped_column(Text)
    application_date: Mapped[date | None] = mapped_column(Date)
    move_in_date: Mapped[date | None] = mapped_column(Date)
    contract_date: Mapped[date | None] = mapped_column(Date)
    key_money: Mapped[Decimal | None] = mapped_column(Money)
    security_deposit: Mapped[Decimal | None] = mapped_column(Money)
    brokerage_fee: Mapped[Decimal | None] = mapped_column(Money)
    fixed_term: Mapped[bool | None] = mapped_column(Boolean)
    output_at: Mapped[datetime | None] = mapped_column(DateTime)


class ContractRenewal(Base):
    """Renewed contracts."""

    __tablename__ = "contract_renewal"
    __table_args__ = {"schema": RAW_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artifact_id: Mapped[int] = _artifact_fk()
    contract_id: Mapped[str] = mapped_column(Text, nullable=False)
    property_no: Mapped[int | None] = mapped_column(Integer)
    room_no: Mapped[int | None] = mapped_column(Integer)
    contractor_name: Mapped[str | None] = mapped_column(Text)
    renewal_date: Mapped[date | None] = mapped_column(Date)
    next_contract_start: Mapped[date | None] = mapped_column(Date)
    next_contract_end: Mapped[date | None] = mapped_column(Date)
    output_at: Mapped[datetime | None] = mapped_column(DateTime)


class ContractTermination(Base):
    """Terminated contracts and their move-out settlement."""

    __tablename__ = "contract_termination"
    __table_args__ = {"schema": RAW_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artifact_id: Mapped[int] = _artifact_fk()
    contract_id: Mapped[str] = mapped_column(Text, nullable=False)
    property_no: Mapped[int | None] = mapped_column(Integer)
    room_no: Mapped[int | None] = mapped_column(Integer)
    contractor_name: Mapped[str | None] = mapped_column(Text)
    notice_received: Mapped[date | None] = mapped_column(Date)
    scheduled_move_out: Mapped[date | None] = mapped_column(Date)
    actual_move_out: Mapped[date | None] = mapped_column(Date)
    inspection_time: Mapped[time | None] = mapped_column(Time)
    settlement_amount: Mapped[Decimal | None] = mapped_column(Money)
    output_at: Mapped[datetime | None] = mapped_column(DateTime)
