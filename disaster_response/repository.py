"""Data access for disasters, reports and resources.

Two interchangeable repositories share one contract: ``SqlRepository`` talks
to Postgres/PostGIS, ``MemoryRepository`` serves fixture data. ``DataStore``
picks one per call and falls back to memory when the database raises.
"""
import logging
import math
import threading
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import contextmanager
from typing import List, NamedTuple, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from geoalchemy2 import Geography
from sqlalchemy import cast, func, or_
from sqlalchemy.exc import SQLAlchemyError

from . import fixtures, models, schemas
from .exceptions import RepositoryError
from .schemas import utcnow

logger = logging.getLogger(__name__)

Page = Tuple[list, int]

EARTH_RADIUS_M = 6_371_000


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


class Repository(ABC):

    # --- Disasters ---
    @abstractmethod
    def list_disasters(self, page: int, limit: int, *, tag=None, search=None, owner_id=None,
                       lat=None, lng=None, radius=10000) -> Page: ...

    @abstractmethod
    def get_disaster(self, disaster_id: str) -> Optional[schemas.Disaster]: ...

    @abstractmethod
    def create_disaster(self, *, title: str, description: str, location_name: str,
                        location: Optional[schemas.Point], tags: List[str], owner_id: str,
                        audit_entry: schemas.AuditEntry) -> schemas.Disaster: ...

    @abstractmethod
    def update_disaster(self, disaster_id: str, changes: dict,
                        audit_entry: schemas.AuditEntry) -> Optional[schemas.Disaster]: ...

    @abstractmethod
    def delete_disaster(self, disaster_id: str) -> Optional[schemas.Disaster]: ...

    @abstractmethod
    def disaster_statistics(self, disaster_id: str) -> Optional[schemas.DisasterStatistics]: ...

    # --- Reports ---
    @abstractmethod
    def list_reports(self, page: int, limit: int, *, disaster_id=None, user_id=None,
                     verification_status=None) -> Page: ...

    @abstractmethod
    def get_report(self, report_id: str) -> Optional[schemas.Report]: ...

    @abstractmethod
    def create_report(self, *, disaster_id: str, user_id: str, content: str,
                      image_url: Optional[str], verification_status: str) -> schemas.Report: ...

    @abstractmethod
    def set_report_status(self, report_id: str, verification_status: str) -> Optional[schemas.Report]: ...

    @abstractmethod
    def delete_report(self, report_id: str) -> Optional[schemas.Report]: ...

    # --- Resources ---
    @abstractmethod
    def list_resources(self, page: int, limit: int, *, disaster_id=None, type=None, available=None,
                       lat=None, lng=None, radius=10000) -> Page: ...

    @abstractmethod
    def nearby_resources(self, lat: float, lng: float, radius: float, *, type=None,
                         disaster_id=None, limit: int = 50) -> List[schemas.Resource]: ...

    @abstractmethod
    def get_resource(self, resource_id: str) -> Optional[schemas.Resource]: ...

    @abstractmethod
    def create_resource(self, *, disaster_id: str, name: str, location_name: str,
                        location: Optional[schemas.Point], type: str,
                        capacity: Optional[int]) -> schemas.Resource: ...

    @abstractmethod
    def update_resource(self, resource_id: str, changes: dict) -> Optional[schemas.Resource]: ...

    @abstractmethod
    def delete_resource(self, resource_id: str) -> Optional[schemas.Resource]: ...


# --- POSTGRES / POSTGIS ---

def _origin(lat: float, lng: float):
    return cast(func.ST_SetSRID(func.ST_MakePoint(lng, lat), 4326), Geography)


def _within(column, lat: float, lng: float, radius: float):
    # Geography cast makes the radius metres instead of degrees
    return func.ST_DWithin(cast(column, Geography), _origin(lat, lng), radius)


class SqlRepository(Repository):
    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise RepositoryError(str(exc)) from exc
        finally:
            db.close()

    @staticmethod
    def _page(query, order_by, page: int, limit: int) -> Page:
        total = query.count()
        rows = query.order_by(order_by).offset((page - 1) * limit).limit(limit).all()
        return [row.to_schema() for row in rows], total

    def list_disasters(self, page, limit, *, tag=None, search=None, owner_id=None,
                       lat=None, lng=None, radius=10000):
        with self._session() as db:
            query = db.query(models.Disaster)
            if tag:
                query = query.filter(models.Disaster.tags.contains([tag]))
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(
                    models.Disaster.title.ilike(pattern),
                    models.Disaster.description.ilike(pattern),
                    models.Disaster.location_name.ilike(pattern),
                ))
            if owner_id:
                query = query.filter(models.Disaster.owner_id == owner_id)
            if lat is not None and lng is not None:
                query = query.filter(_within(models.Disaster.geom, lat, lng, radius))
            return self._page(query, models.Disaster.created_at.desc(), page, limit)

    def get_disaster(self, disaster_id):
        with self._session() as db:
            row = db.get(models.Disaster, disaster_id)
            return row.to_schema() if row else None

    def create_disaster(self, *, title, description, location_name, location, tags, owner_id, audit_entry):
        now = utcnow()
        disaster = schemas.Disaster(
            id=models._new_id(),
            title=title,
            description=description,
            location_name=location_name,
            location=location,
            tags=tags,
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
            audit_trail=[audit_entry],
        )
        with self._session() as db:
            row = models.Disaster.from_schema(disaster)
            db.add(row)
            db.flush()
            db.refresh(row)
            return row.to_schema()

    def update_disaster(self, disaster_id, changes, audit_entry):
        with self._session() as db:
            row = db.get(models.Disaster, disaster_id)
            if row is None:
                return None
            for field in ("title", "description", "tags", "location_name"):
                if field in changes:
                    setattr(row, field, changes[field])
            if "location" in changes:
                location = changes["location"]
                row.latitude = location.lat if location else None
                row.longitude = location.lng if location else None
                row.geom = models.point_wkt(location)
            # Reassign so the JSONB column is marked dirty
            row.audit_trail = [*(row.audit_trail or []), audit_entry.model_dump(mode="json")]
            row.updated_at = utcnow()
            db.flush()
            db.refresh(row)
            return row.to_schema()

    def delete_disaster(self, disaster_id):
        with self._session() as db:
            row = db.get(models.Disaster, disaster_id)
            if row is None:
                return None
            disaster = row.to_schema()
            db.delete(row)
            return disaster

    def disaster_statistics(self, disaster_id):
        with self._session() as db:
            row = db.get(models.Disaster, disaster_id)
            if row is None:
                return None
            by_status = dict(
                db.query(models.Report.verification_status, func.count(models.Report.id))
                .filter(models.Report.disaster_id == disaster_id)
                .group_by(models.Report.verification_status)
                .all()
            )
            by_type = dict(
                db.query(models.Resource.type, func.count(models.Resource.id))
                .filter(models.Resource.disaster_id == disaster_id)
                .group_by(models.Resource.type)
                .all()
            )
            return schemas.DisasterStatistics(
                disaster=row.to_schema(),
                reports_count=sum(by_status.values()),
                resources_count=sum(by_type.values()),
                reports_by_status=by_status,
                resources_by_type=by_type,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )

    def list_reports(self, page, limit, *, disaster_id=None, user_id=None, verification_status=None):
        with self._session() as db:
            query = db.query(models.Report)
            if disaster_id:
                query = query.filter(models.Report.disaster_id == disaster_id)
            if user_id:
                query = query.filter(models.Report.user_id == user_id)
            if verification_status:
                query = query.filter(models.Report.verification_status == verification_status)
            return self._page(query, models.Report.created_at.desc(), page, limit)

    def get_report(self, report_id):
        with self._session() as db:
            row = db.get(models.Report, report_id)
            return row.to_schema() if row else None

    def create_report(self, *, disaster_id, user_id, content, image_url, verification_status):
        with self._session() as db:
            row = models.Report(
                disaster_id=disaster_id,
                user_id=user_id,
                content=content,
                image_url=image_url,
                verification_status=verification_status,
            )
            db.add(row)
            db.flush()
            db.refresh(row)
            return row.to_schema()

    def set_report_status(self, report_id, verification_status):
        with self._session() as db:
            row = db.get(models.Report, report_id)
            if row is None:
                return None
            row.verification_status = verification_status
            row.updated_at = utcnow()
            db.flush()
            db.refresh(row)
            return row.to_schema()

    def delete_report(self, report_id):
        with self._session() as db:
            row = db.get(models.Report, report_id)
            if row is None:
                return None
            report = row.to_schema()
            db.delete(row)
            return report

    def list_resources(self, page, limit, *, disaster_id=None, type=None, available=None,
                       lat=None, lng=None, radius=10000):
        with self._session() as db:
            query = db.query(models.Resource)
            if disaster_id:
                query = query.filter(models.Resource.disaster_id == disaster_id)
            if type:
                query = query.filter(models.Resource.type == type)
            if available is not None:
                query = query.filter(models.Resource.available == available)
            if lat is not None and lng is not None:
                query = query.filter(_within(models.Resource.geom, lat, lng, radius))
            return self._page(query, models.Resource.created_at.desc(), page, limit)

    def nearby_resources(self, lat, lng, radius, *, type=None, disaster_id=None, limit=50):
        with self._session() as db:
            distance = func.ST_Distance(cast(models.Resource.geom, Geography), _origin(lat, lng))
            query = db.query(models.Resource).filter(_within(models.Resource.geom, lat, lng, radius))
            if type:
                query = query.filter(models.Resource.type == type)
            if disaster_id:
                query = query.filter(models.Resource.disaster_id == disaster_id)
            return [row.to_schema() for row in query.order_by(distance).limit(limit).all()]

    def get_resource(self, resource_id):
        with self._session() as db:
            row = db.get(models.Resource, resource_id)
            return row.to_schema() if row else None

    def create_resource(self, *, disaster_id, name, location_name, location, type, capacity):
        with self._session() as db:
            row = models.Resource(
                disaster_id=disaster_id,
                name=name,
                location_name=location_name,
                latitude=location.lat if location else None,
                longitude=location.lng if location else None,
                geom=models.point_wkt(location),
                type=type,
                capacity=capacity,
                available=True,
            )
            db.add(row)
            db.flush()
            db.refresh(row)
            return row.to_schema()

    def update_resource(self, resource_id, changes):
        with self._session() as db:
            row = db.get(models.Resource, resource_id)
            if row is None:
                return None
            for field in ("name", "type", "capacity", "available", "location_name"):
                if field in changes:
                    setattr(row, field, changes[field])
            if "location" in changes:
                location = changes["location"]
                row.latitude = location.lat if location else None
                row.longitude = location.lng if location else None
                row.geom = models.point_wkt(location)
            db.flush()
            db.refresh(row)
            return row.to_schema()

    def delete_resource(self, resource_id):
        with self._session() as db:
            row = db.get(models.Resource, resource_id)
            if row is None:
                return None
            resource = row.to_schema()
            db.delete(row)
            return resource


# --- IN-MEMORY FIXTURES ---

def _slice(items: list, page: int, limit: int) -> Page:
    start = (page - 1) * limit
    return items[start:start + limit], len(items)


def _newest_first(items: list) -> list:
    return sorted(items, key=lambda item: item.created_at, reverse=True)


class MemoryRepository(Repository):
    """Fixture-seeded store. Ignores radius filters on list queries."""

    def __init__(self, disasters=None, reports=None, resources=None):
        self._lock = threading.Lock()
        self.disasters = {d.id: d for d in (disasters if disasters is not None else fixtures.sample_disasters())}
        self.reports = {r.id: r for r in (reports if reports is not None else fixtures.sample_reports())}
        self.resources = {r.id: r for r in (resources if resources is not None else fixtures.sample_resources())}

    @staticmethod
    def _new_id(prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12]}"

    def list_disasters(self, page, limit, *, tag=None, search=None, owner_id=None,
                       lat=None, lng=None, radius=10000):
        # Radius is a database-only filter; memory mode returns every match
        with self._lock:
            items = list(self.disasters.values())
        if tag:
            items = [d for d in items if tag in d.tags]
        if search:
            needle = search.lower()
            items = [
                d for d in items
                if needle in d.title.lower()
                or needle in d.description.lower()
                or needle in d.location_name.lower()
            ]
        if owner_id:
            items = [d for d in items if d.owner_id == owner_id]
        return _slice(_newest_first(items), page, limit)

    def get_disaster(self, disaster_id):
        with self._lock:
            return self.disasters.get(disaster_id)

    def create_disaster(self, *, title, description, location_name, location, tags, owner_id, audit_entry):
        now = utcnow()
        disaster = schemas.Disaster(
            id=self._new_id("disaster"),
            title=title,
            description=description,
            location_name=location_name,
            location=location,
            tags=tags,
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
            audit_trail=[audit_entry],
        )
        with self._lock:
            self.disasters[disaster.id] = disaster
        return disaster

    def update_disaster(self, disaster_id, changes, audit_entry):
        with self._lock:
            current = self.disasters.get(disaster_id)
            if current is None:
                return None
            updated = current.model_copy(update={
                **changes,
                "audit_trail": [*current.audit_trail, audit_entry],
                "updated_at": utcnow(),
            })
            self.disasters[disaster_id] = updated
            return updated

    def delete_disaster(self, disaster_id):
        with self._lock:
            disaster = self.disasters.pop(disaster_id, None)
            if disaster is not None:
                # Same cascade the database applies through its foreign keys
                self.reports = {k: r for k, r in self.reports.items() if r.disaster_id != disaster_id}
                self.resources = {k: r for k, r in self.resources.items() if r.disaster_id != disaster_id}
            return disaster

    def disaster_statistics(self, disaster_id):
        with self._lock:
            disaster = self.disasters.get(disaster_id)
            if disaster is None:
                return None
            by_status = Counter(r.verification_status for r in self.reports.values() if r.disaster_id == disaster_id)
            by_type = Counter(r.type for r in self.resources.values() if r.disaster_id == disaster_id)
        return schemas.DisasterStatistics(
            disaster=disaster,
            reports_count=sum(by_status.values()),
            resources_count=sum(by_type.values()),
            reports_by_status=dict(by_status),
            resources_by_type=dict(by_type),
            created_at=disaster.created_at,
            updated_at=disaster.updated_at,
        )

    def list_reports(self, page, limit, *, disaster_id=None, user_id=None, verification_status=None):
        with self._lock:
            items = list(self.reports.values())
        if disaster_id:
            items = [r for r in items if r.disaster_id == disaster_id]
        if user_id:
            items = [r for r in items if r.user_id == user_id]
        if verification_status:
            items = [r for r in items if r.verification_status == verification_status]
        return _slice(_newest_first(items), page, limit)

    def get_report(self, report_id):
        with self._lock:
            return self.reports.get(report_id)

    def create_report(self, *, disaster_id, user_id, content, image_url, verification_status):
        report = schemas.Report(
            id=self._new_id("report"),
            disaster_id=disaster_id,
            user_id=user_id,
            content=content,
            image_url=image_url,
            verification_status=verification_status,
            created_at=utcnow(),
        )
        with self._lock:
            self.reports[report.id] = report
        return report

    def set_report_status(self, report_id, verification_status):
        with self._lock:
            current = self.reports.get(report_id)
            if current is None:
                return None
            updated = current.model_copy(update={
                "verification_status": verification_status,
                "updated_at": utcnow(),
            })
            self.reports[report_id] = updated
            return updated

    def delete_report(self, report_id):
        with self._lock:
            return self.reports.pop(report_id, None)

    def list_resources(self, page, limit, *, disaster_id=None, type=None, available=None,
                       lat=None, lng=None, radius=10000):
        # No distance filtering in memory mode; /api/resources/nearby does that
        with self._lock:
            items = list(self.resources.values())
        if disaster_id:
            items = [r for r in items if r.disaster_id == disaster_id]
        if type:
            items = [r for r in items if r.type == type]
        if available is not None:
            items = [r for r in items if r.available == available]
        return _slice(_newest_first(items), page, limit)

    def nearby_resources(self, lat, lng, radius, *, type=None, disaster_id=None, limit=50):
        with self._lock:
            items = list(self.resources.values())
        scored = []
        for resource in items:
            if resource.location is None:
                continue
            if type and resource.type != type:
                continue
            if disaster_id and resource.disaster_id != disaster_id:
                continue
            distance = haversine_m(lat, lng, resource.location.lat, resource.location.lng)
            if distance <= radius:
                scored.append((distance, resource))
        scored.sort(key=lambda pair: pair[0])
        return [resource for _, resource in scored[:limit]]

    def get_resource(self, resource_id):
        with self._lock:
            return self.resources.get(resource_id)

    def create_resource(self, *, disaster_id, name, location_name, location, type, capacity):
        resource = schemas.Resource(
            id=self._new_id("resource"),
            disaster_id=disaster_id,
            name=name,
            location_name=location_name,
            location=location,
            type=type,
            capacity=capacity,
            available=True,
            created_at=utcnow(),
        )
        with self._lock:
            self.resources[resource.id] = resource
        return resource

    def update_resource(self, resource_id, changes):
        with self._lock:
            current = self.resources.get(resource_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes)
            self.resources[resource_id] = updated
            return updated

    def delete_resource(self, resource_id):
        with self._lock:
            return self.resources.pop(resource_id, None)


# --- SELECTION + FALLBACK ---

class StoreResult(NamedTuple):
    value: object
    mock: bool


class DataStore:
    def __init__(self, primary: Optional[Repository], fallback: MemoryRepository):
        self.primary = primary
        self.fallback = fallback

    @property
    def mode(self) -> str:
        return "database" if self.primary is not None else "memory"

    async def call(self, operation: str, *args, **kwargs) -> StoreResult:
        """Run ``operation`` on the configured backend.

        ``mock`` is only set when the database failed and memory answered instead.
        """
        if self.primary is None:
            return StoreResult(getattr(self.fallback, operation)(*args, **kwargs), False)

        try:
            value = await run_in_threadpool(getattr(self.primary, operation), *args, **kwargs)
            return StoreResult(value, False)
        except RepositoryError as exc:
            logger.warning("Database error during %s, using mock data: %s", operation, exc)

        value = getattr(self.fallback, operation)(*args, **kwargs)
        return StoreResult(value, True)
