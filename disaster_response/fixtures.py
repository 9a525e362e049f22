"""Sample records served when the hosted database is unreachable.

Every call builds fresh objects so separate stores never share state.
"""
from datetime import timedelta
from typing import List

from . import schemas
from .schemas import utcnow


def _ago(**delta):
    return utcnow() - timedelta(**delta)


def sample_disasters() -> List[schemas.Disaster]:
    return [
        schemas.Disaster(
            id="disaster-1",
            title="NYC Flood Emergency",
            location_name="Manhattan, NYC",
            location=schemas.Point(lat=40.7128, lng=-74.0060),
            description="Heavy flooding in Manhattan affecting Lower East Side and Financial District",
            tags=["flood", "urgent", "manhattan"],
            owner_id="netrunnerX",
            created_at=_ago(hours=2),
            updated_at=_ago(minutes=30),
        ),
        schemas.Disaster(
            id="disaster-2",
            title="California Wildfire",
            location_name="Los Angeles, CA",
            location=schemas.Point(lat=34.0522, lng=-118.2437),
            description="Major wildfire spreading rapidly in Los Angeles County",
            tags=["wildfire", "california", "emergency"],
            owner_id="reliefAdmin",
            created_at=_ago(hours=4),
            updated_at=_ago(hours=1),
        ),
        schemas.Disaster(
            id="disaster-3",
            title="Texas Tornado",
            location_name="Dallas, TX",
            location=schemas.Point(lat=32.7767, lng=-96.7970),
            description="Tornado touchdown reported in Dallas metropolitan area",
            tags=["tornado", "texas", "dallas"],
            owner_id="netrunnerX",
            created_at=_ago(hours=6),
            updated_at=_ago(hours=2),
        ),
    ]


def sample_reports() -> List[schemas.Report]:
    return [
        schemas.Report(
            id="report-1",
            disaster_id="disaster-1",
            user_id="citizen1",
            content="URGENT: Water level rising rapidly in Lower East Side. Need immediate evacuation assistance!",
            image_url="https://example.com/flood-image-1.jpg",
            verification_status="verified",
            created_at=_ago(minutes=30),
        ),
        schemas.Report(
            id="report-2",
            disaster_id="disaster-1",
            user_id="relief_worker",
            content="Red Cross shelter now open at 123 Main St. Food and water available.",
            verification_status="verified",
            created_at=_ago(minutes=45),
        ),
        schemas.Report(
            id="report-3",
            disaster_id="disaster-2",
            user_id="firefighter",
            content="Fire spreading rapidly towards residential areas. Evacuation orders issued.",
            image_url="https://example.com/fire-image-1.jpg",
            verification_status="pending",
            created_at=_ago(hours=1),
        ),
    ]


def sample_resources() -> List[schemas.Resource]:
    return [
        schemas.Resource(
            id="resource-1",
            disaster_id="disaster-1",
            name="Red Cross Emergency Shelter",
            location_name="Lower East Side, NYC",
            location=schemas.Point(lat=40.7142, lng=-73.9897),
            type="shelter",
            capacity=200,
            created_at=_ago(hours=1),
        ),
        schemas.Resource(
            id="resource-2",
            disaster_id="disaster-1",
            name="Bellevue Hospital",
            location_name="Manhattan, NYC",
            location=schemas.Point(lat=40.7421, lng=-73.9731),
            type="hospital",
            capacity=1000,
            created_at=_ago(hours=2),
        ),
        schemas.Resource(
            id="resource-3",
            disaster_id="disaster-2",
            name="LA County Fire Station",
            location_name="Los Angeles, CA",
            location=schemas.Point(lat=34.0522, lng=-118.2437),
            type="medical",
            created_at=_ago(hours=3),
        ),
    ]


def sample_social_posts() -> List[schemas.SocialMediaPost]:
    return [
        schemas.SocialMediaPost(
            id="post-1",
            platform="twitter",
            user="citizen1",
            content="URGENT: Need immediate medical assistance in Lower East Side! #floodrelief #SOS",
            timestamp=_ago(minutes=5),
            disaster_id="disaster-1",
            priority="urgent",
        ),
        schemas.SocialMediaPost(
            id="post-2",
            platform="twitter",
            user="relief_worker",
            content="Red Cross shelter now open at 123 Main St. Food and water available. #disasterrelief",
            timestamp=_ago(minutes=15),
            disaster_id="disaster-1",
            priority="high",
        ),
        schemas.SocialMediaPost(
            id="post-3",
            platform="twitter",
            user="volunteer_org",
            content="Volunteers needed for cleanup efforts. Contact us if you can help! #volunteer #disasterresponse",
            timestamp=_ago(minutes=45),
            disaster_id="disaster-1",
            priority="medium",
        ),
    ]


def social_posts_for(disaster_id: str, limit: int = 20) -> List[schemas.SocialMediaPost]:
    return [post for post in sample_social_posts() if post.disaster_id == disaster_id][:limit]


def urgent_social_posts_for(disaster_id: str) -> List[schemas.SocialMediaPost]:
    return [
        post for post in sample_social_posts()
        if post.disaster_id == disaster_id and post.priority == "urgent"
    ]


def official_updates_for(disaster_id: str) -> List[schemas.OfficialUpdate]:
    return [
        schemas.OfficialUpdate(
            id="update-1",
            source="National Weather Service",
            title="Flash Flood Warning Issued",
            content="A flash flood warning is in effect for the next 2 hours. Seek higher ground immediately.",
            url="#",
            timestamp=utcnow(),
            disaster_id=disaster_id,
        ),
        schemas.OfficialUpdate(
            id="update-2",
            source="Mayor's Office",
            title="Evacuation Centers Open",
            content="Evacuation centers are now open at City Hall and the Convention Center.",
            url="#",
            timestamp=_ago(minutes=30),
            disaster_id=disaster_id,
        ),
    ]
