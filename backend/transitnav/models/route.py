"""Route and RouteStep database models."""

import enum
import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from transitnav.models.base import Base, RecordMixin
from transitnav.models.location import Location


class TransportMode(str, enum.Enum):
    """Vehicle type for a leg. UNKNOWN is only used for synthesized legs."""

    BUS = "bus"
    TAXI = "taxi"
    KEKE = "keke"
    OKADA = "okada"
    WALK = "walk"
    UNKNOWN = "unknown"


# Aliases seen in contributions and provider responses
MODE_ALIASES = {
    "walking": TransportMode.WALK,
    "foot": TransportMode.WALK,
    "tricycle": TransportMode.KEKE,
    "keke_napep": TransportMode.KEKE,
    "motorcycle": TransportMode.OKADA,
    "motorbike": TransportMode.OKADA,
    "bike": TransportMode.OKADA,
    "car": TransportMode.TAXI,
    "cab": TransportMode.TAXI,
    "danfo": TransportMode.BUS,
    "brt": TransportMode.BUS,
    "transit": TransportMode.BUS,
}


def normalize_mode(value) -> TransportMode:
    """Map a raw mode string onto TransportMode, UNKNOWN when unrecognised."""
    if isinstance(value, TransportMode):
        return value
    key = str(value or "").strip().lower()
    try:
        return TransportMode(key)
    except ValueError:
        return MODE_ALIASES.get(key, TransportMode.UNKNOWN)


class Route(RecordMixin, Base):
    """A named, directed relation between two locations."""

    __tablename__ = "routes"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    start_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=False, index=True
    )
    end_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=False, index=True
    )

    transport_modes: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Aggregates over steps
    distance_km: Mapped[Optional[float]] = mapped_column(Numeric(8, 2, asdecimal=False), nullable=True)
    estimated_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_fare: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)
    max_fare: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)

    # Moderation and popularity
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    average_rating: Mapped[float] = mapped_column(Float, default=0.0)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    search_count: Mapped[int] = mapped_column(Integer, default=0)
    popularity_score: Mapped[float] = mapped_column(Float, default=0.0)

    start_location: Mapped[Location] = relationship(
        Location, foreign_keys=[start_location_id], lazy="selectin"
    )
    end_location: Mapped[Location] = relationship(
        Location, foreign_keys=[end_location_id], lazy="selectin"
    )
    steps: Mapped[List["RouteStep"]] = relationship(
        "RouteStep",
        back_populates="route",
        order_by="RouteStep.step_number",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Route {self.name}>"


class RouteStep(RecordMixin, Base):
    """One atomic leg of a route.

    Crowdsourced fare and duration are kept as running count/sum columns so
    feedback can be folded in with a single atomic UPDATE. Individual reports
    live in ``fare_feedback``.
    """

    __tablename__ = "route_steps"
    __table_args__ = (
        UniqueConstraint("route_id", "step_number", name="uq_route_steps_route_step_number"),
    )

    route_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)

    from_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=False
    )
    to_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=False
    )

    transport_mode: Mapped[TransportMode] = mapped_column(Enum(TransportMode), nullable=False)
    instructions: Mapped[str] = mapped_column(Text, nullable=False)

    fare_min: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)
    fare_max: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)
    estimated_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    distance_km: Mapped[Optional[float]] = mapped_column(Numeric(8, 2, asdecimal=False), nullable=True)

    pickup_point: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dropoff_point: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    landmarks: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Crowdsourced fare aggregate
    fare_report_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fare_report_sum: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    fare_report_sum_sq: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    fare_last_reported_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Crowdsourced duration aggregate
    duration_report_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration_report_sum: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    duration_last_reported_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    route: Mapped[Route] = relationship(Route, back_populates="steps")
    from_location: Mapped[Location] = relationship(
        Location, foreign_keys=[from_location_id], lazy="selectin"
    )
    to_location: Mapped[Location] = relationship(
        Location, foreign_keys=[to_location_id], lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<RouteStep {self.step_number} {self.transport_mode.value}>"
