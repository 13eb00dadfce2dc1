"""RouteSegment database model: shared sub-paths reused across routes."""

import uuid
from typing import Optional, List, Dict, Any

from sqlalchemy import Boolean, ForeignKey, Integer, JSON, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from transitnav.models.base import Base, RecordMixin
from transitnav.models.location import Location


class RouteSegment(RecordMixin, Base):
    """A directed piece of road topology between two locations.

    ``intermediate_stops`` holds ``{"location_id", "name", "order", "is_optional"}``
    entries. Segments are the edges of the planner's location graph.
    """

    __tablename__ = "route_segments"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    start_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=False, index=True
    )
    end_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("locations.id"), nullable=False, index=True
    )

    intermediate_stops: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    transport_modes: Mapped[List[str]] = mapped_column(JSON, default=list)

    distance_km: Mapped[float] = mapped_column(Numeric(8, 2, asdecimal=False), nullable=False)
    estimated_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    min_fare: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)
    max_fare: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)

    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    landmarks: Mapped[List[str]] = mapped_column(JSON, default=list)

    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    start_location: Mapped[Location] = relationship(
        Location, foreign_keys=[start_location_id], lazy="selectin"
    )
    end_location: Mapped[Location] = relationship(
        Location, foreign_keys=[end_location_id], lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<RouteSegment {self.name}>"
