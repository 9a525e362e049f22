from datetime import datetime, timezone
from typing import Annotated, Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, StringConstraints

T = TypeVar("T")

# Blank strings count as missing for every required text field
RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

VerificationStatus = Literal["pending", "verified", "rejected"]
ResourceType = Literal["shelter", "hospital", "food", "water", "medical", "transport"]
Priority = Literal["low", "medium", "high", "urgent"]

PRIORITIES = ("low", "medium", "high", "urgent")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Point(BaseModel):
    lat: float
    lng: float


class AuditEntry(BaseModel):
    action: str
    user_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    details: Optional[dict] = None


# --- DISASTERS ---

class DisasterCreate(BaseModel):
    title: RequiredText
    description: RequiredText
    location_name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class DisasterUpdate(BaseModel):
    title: Optional[RequiredText] = None
    description: Optional[RequiredText] = None
    location_name: Optional[str] = None
    tags: Optional[List[str]] = None


class Disaster(BaseModel):
    id: str
    title: str
    location_name: str
    location: Optional[Point] = None
    description: str
    tags: List[str] = Field(default_factory=list)
    owner_id: str
    created_at: datetime
    updated_at: datetime
    audit_trail: List[AuditEntry] = Field(default_factory=list)

    class Config:
        # Lets Pydantic read rows straight from the ORM models
        from_attributes = True


class DisasterStatistics(BaseModel):
    disaster: Disaster
    reports_count: int
    resources_count: int
    reports_by_status: dict
    resources_by_type: dict
    created_at: datetime
    updated_at: datetime


# --- REPORTS ---

class ReportCreate(BaseModel):
    disaster_id: RequiredText
    content: RequiredText
    image_url: Optional[str] = None


class ReportVerify(BaseModel):
    verification_status: VerificationStatus
    image_url: Optional[str] = None


class Report(BaseModel):
    id: str
    disaster_id: str
    user_id: str
    content: str
    image_url: Optional[str] = None
    verification_status: VerificationStatus = "pending"
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# --- RESOURCES ---

class ResourceCreate(BaseModel):
    disaster_id: RequiredText
    name: RequiredText
    location_name: RequiredText
    type: ResourceType
    capacity: Optional[int] = Field(default=None, ge=0)


class ResourceUpdate(BaseModel):
    name: Optional[RequiredText] = None
    location_name: Optional[RequiredText] = None
    type: Optional[ResourceType] = None
    capacity: Optional[int] = Field(default=None, ge=0)
    available: Optional[bool] = None


class Resource(BaseModel):
    id: str
    disaster_id: str
    name: str
    location_name: str
    location: Optional[Point] = None
    type: ResourceType
    capacity: Optional[int] = None
    available: bool = True
    created_at: datetime

    class Config:
        from_attributes = True


# --- SOCIAL MEDIA / OFFICIAL UPDATES ---

class Engagement(BaseModel):
    likes: int = 0
    reposts: int = 0
    replies: int = 0


class SocialMediaPost(BaseModel):
    id: str
    platform: Literal["bluesky", "twitter"] = "bluesky"
    user: str
    content: str
    timestamp: datetime
    disaster_id: Optional[str] = None
    priority: Priority = "low"
    engagement: Optional[Engagement] = None


class SocialPostRequest(BaseModel):
    text: RequiredText


class OfficialUpdate(BaseModel):
    id: str
    source: str
    title: str
    content: str
    url: str
    timestamp: datetime
    disaster_id: Optional[str] = None


# --- GEOCODING / VERIFICATION ---

class GeocodeRequest(BaseModel):
    location_name: RequiredText


class GeocodingResult(BaseModel):
    location_name: str
    lat: float
    lng: float
    formatted_address: str


class ImageVerificationRequest(BaseModel):
    image_url: RequiredText
    disaster_context: Optional[str] = None


class ImageVerificationResult(BaseModel):
    is_authentic: bool
    confidence: float = Field(ge=0, le=100)
    analysis: str = ""
    detected_manipulations: List[str] = Field(default_factory=list)


class PriorityRequest(BaseModel):
    content: RequiredText


class PriorityResult(BaseModel):
    priority: Priority


# --- AUTH (mock only) ---

class LoginRequest(BaseModel):
    username: RequiredText
    password: RequiredText


class User(BaseModel):
    id: str
    username: str
    role: Literal["admin", "contributor", "viewer"] = "contributor"


class LoginResult(BaseModel):
    token: str
    user: User


# --- REAL-TIME FEEDS ---

class WeatherAlert(BaseModel):
    id: str
    type: str
    severity: Optional[str] = None
    area: Optional[str] = None
    description: Optional[str] = None
    effective: Optional[datetime] = None
    expires: Optional[datetime] = None
    coordinates: List[Any] = Field(default_factory=list)


class EmergencyAlert(BaseModel):
    id: str
    type: str
    state: str
    county: Optional[str] = None
    declaration_date: Optional[datetime] = None
    title: str
    description: str


class RealTimeSnapshot(BaseModel):
    disasters: List[Disaster] = Field(default_factory=list)
    social_media: List[SocialMediaPost] = Field(default_factory=list)
    weather: List[WeatherAlert] = Field(default_factory=list)
    emergency_alerts: List[EmergencyAlert] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)
    reports: List[Report] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


class CacheStats(BaseModel):
    total: int
    expired: int


# --- RESPONSE ENVELOPES ---

class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    error: Optional[str] = None
    message: Optional[str] = None
    source: Optional[str] = None
    count: Optional[int] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")

    class Config:
        populate_by_name = True


class PaginatedResponse(ApiResponse[List[T]], Generic[T]):
    pagination: Pagination


def paginate(page: int, limit: int, total: int) -> Pagination:
    total_pages = (total + limit - 1) // limit if limit else 0
    return Pagination(page=page, limit=limit, total=total, total_pages=total_pages)
