"""Location database model."""

import enum
from typing import Optional, List

from sqlalchemy import Boolean, Enum, Integer, Numeric, String, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from transitnav.models.base import Base, RecordMixin


class LocationType(str, enum.Enum):
    """Category of a named place."""

    BUS_STOP = "bus_stop"
    MOTOR_PARK = "motor_park"
    TRAIN_STATION = "train_station"
    TAXI_STAND = "taxi_stand"
    MARKET = "market"
    SCHOOL = "school"
    HOSPITAL = "hospital"
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    LANDMARK = "landmark"
    OTHER = "other"


class Location(RecordMixin, Base):
    """A named point that routes, steps and segments connect.

    Locations are never hard-deleted; ``is_active=False`` retires them.
    """

    __tablename__ = "locations"
    __table_args__ = (
        Index("ix_locations_lat_lng", "latitude", "longitude"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[str] = mapped_column(String(100), default="Nigeria")

    latitude: Mapped[float] = mapped_column(Numeric(10, 7, asdecimal=False), nullable=False)
    longitude: Mapped[float] = mapped_column(Numeric(10, 7, asdecimal=False), nullable=False)

    location_type: Mapped[LocationType] = mapped_column(
        Enum(LocationType),
        default=LocationType.OTHER,
    )
    transport_modes: Mapped[List[str]] = mapped_column(JSON, default=list)
    landmarks: Mapped[List[str]] = mapped_column(JSON, default=list)
    google_place_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Moderation
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Popularity signals, updated with atomic increments
    search_count: Mapped[int] = mapped_column(Integer, default=0)
    route_count: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<Location {self.name} ({self.latitude}, {self.longitude})>"
