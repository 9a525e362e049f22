import uuid

from geoalchemy2 import Geometry
from geoalchemy2.elements import WKTElement
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.sql import func

from . import schemas
from .database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def point_wkt(location):
    # SRID 4326 is the code for standard GPS Lat/Lon
    if location is None:
        return None
    return WKTElement(f"POINT({location.lng} {location.lat})", srid=4326)


def _point(latitude, longitude):
    if latitude is None or longitude is None:
        return None
    return schemas.Point(lat=latitude, lng=longitude)


class Disaster(Base):
    __tablename__ = "disasters"

    # 1. Metadata
    id = Column(String, primary_key=True, default=_new_id)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    owner_id = Column(String, nullable=False, index=True)

    # 2. User Inputs
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    location_name = Column(String, nullable=False, default="Unknown Location")
    tags = Column(ARRAY(String), nullable=False, default=list)

    # 3. Geolocation: plain floats for reading, a PostGIS point for radius queries
    latitude = Column(Float)
    longitude = Column(Float)
    geom = Column(Geometry(geometry_type="POINT", srid=4326))

    # 4. Append-only history of create/update actions
    audit_trail = Column(JSONB, nullable=False, default=list)

    @classmethod
    def from_schema(cls, disaster: schemas.Disaster) -> "Disaster":
        location = disaster.location
        return cls(
            id=disaster.id,
            title=disaster.title,
            description=disaster.description,
            location_name=disaster.location_name,
            tags=list(disaster.tags),
            owner_id=disaster.owner_id,
            latitude=location.lat if location else None,
            longitude=location.lng if location else None,
            geom=point_wkt(location),
            audit_trail=[entry.model_dump(mode="json") for entry in disaster.audit_trail],
            created_at=disaster.created_at,
            updated_at=disaster.updated_at,
        )

    def to_schema(self) -> schemas.Disaster:
        return schemas.Disaster(
            id=self.id,
            title=self.title,
            location_name=self.location_name,
            location=_point(self.latitude, self.longitude),
            description=self.description,
            tags=list(self.tags or []),
            owner_id=self.owner_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            audit_trail=self.audit_trail or [],
        )


class Report(Base):
    __tablename__ = "reports"

    id = Column(String, primary_key=True, default=_new_id)
    disaster_id = Column(String, ForeignKey("disasters.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    image_url = Column(String)
    verification_status = Column(String, nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True))

    def to_schema(self) -> schemas.Report:
        return schemas.Report.model_validate(self)


class Resource(Base):
    __tablename__ = "resources"

    id = Column(String, primary_key=True, default=_new_id)
    disaster_id = Column(String, ForeignKey("disasters.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    location_name = Column(String, nullable=False)
    type = Column(String, nullable=False, index=True)
    capacity = Column(Integer)
    available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    latitude = Column(Float)
    longitude = Column(Float)
    geom = Column(Geometry(geometry_type="POINT", srid=4326))

    def to_schema(self) -> schemas.Resource:
        return schemas.Resource(
            id=self.id,
            disaster_id=self.disaster_id,
            name=self.name,
            location_name=self.location_name,
            location=_point(self.latitude, self.longitude),
            type=self.type,
            capacity=self.capacity,
            available=self.available,
            created_at=self.created_at,
        )


class CacheEntry(Base):
    __tablename__ = "cache"

    # No relationships; swept on a schedule
    key = Column(String, primary_key=True)
    value = Column(JSON)
    expires_at = Column(DateTime, nullable=False, index=True)
