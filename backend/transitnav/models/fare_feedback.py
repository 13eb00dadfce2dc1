"""Fare feedback database model (append-only)."""

import uuid
from datetime import date
from typing import Optional

from sqlalchemy import Date, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from transitnav.models.base import Base, RecordMixin


class FareFeedback(RecordMixin, Base):
    """One rider-submitted fare observation for a route step.

    Rows are inserted once and never updated or deleted.
    """

    __tablename__ = "fare_feedback"

    route_step_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("route_steps.id"), nullable=False, index=True
    )
    actual_fare_paid: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    vehicle_type_used: Mapped[str] = mapped_column(String(20), nullable=False)
    date_of_travel: Mapped[date] = mapped_column(Date, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<FareFeedback {self.route_step_id} N{self.actual_fare_paid}>"
