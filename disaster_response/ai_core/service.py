import io
import logging
import re
from typing import Optional

import google.generativeai as genai
import httpx
from PIL import Image
from pydantic import ValidationError

from ..cache import hashed_key
from ..schemas import PRIORITIES, GeocodingResult, ImageVerificationResult

logger = logging.getLogger(__name__)

# --- 1. CONFIGURATION ---

LOCATION_TTL = 3600
VERIFICATION_TTL = 3600
PRIORITY_TTL = 1800

DEFAULT_PRIORITY = "medium"

LOCATION_PROMPT = """
Extract the location name from the following disaster description.
Return only the location name in a clear, standardized format.
If multiple locations are mentioned, return the primary one.
If no clear location is found, return null.

Description: "{description}"

Return format: Just the location name (e.g., "Manhattan, NYC", "Los Angeles, CA")
"""

VERIFICATION_PROMPT = """
Analyze this image for authenticity in the context of disaster reporting.
{context}
Please assess:
1. Does this image appear to show a real disaster situation?
2. Are there signs of digital manipulation or editing?
3. Does the content match typical disaster scenarios?
4. What is your confidence level in the authenticity (0-100)?

Return your analysis in JSON format:
{{
  "is_authentic": boolean,
  "confidence": number (0-100),
  "analysis": "detailed explanation",
  "detected_manipulations": ["list of any detected manipulations"]
}}
"""

PRIORITY_PROMPT = """
Analyze this social media post for disaster response priority.

Content: "{content}"

Classify the priority level based on:
- URGENT: Immediate life-threatening situations, SOS calls, critical needs
- HIGH: Serious situations requiring immediate attention
- MEDIUM: Important but not immediately critical
- LOW: General information, updates, non-critical

Return only one word: URGENT, HIGH, MEDIUM, or LOW
"""

FALLBACK_VERIFICATION = ImageVerificationResult(
    is_authentic=True,
    confidence=30,
    analysis="Unable to verify image due to technical error",
    detected_manipulations=[],
)

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


# --- 2. RESPONSE PARSING ---

def parse_verification(text: str) -> ImageVerificationResult:
    match = _JSON_BLOCK.search(text)
    if match is None:
        lowered = text.lower()
        if "high" in lowered:
            confidence = 80
        elif "medium" in lowered:
            confidence = 60
        else:
            confidence = 40
        return ImageVerificationResult(
            is_authentic="fake" not in lowered and "manipulated" not in lowered,
            confidence=confidence,
            analysis=text,
            detected_manipulations=["Potential editing detected"] if "manipulation" in lowered else [],
        )

    try:
        return ImageVerificationResult.model_validate_json(match.group(0))
    except ValidationError:
        logger.warning("Could not parse verification JSON, assuming authentic")
        return ImageVerificationResult(is_authentic=True, confidence=50, analysis=text)


def parse_location(text: str) -> Optional[str]:
    name = text.strip().strip('"').strip()
    lowered = name.lower()
    if not name or "null" in lowered or "no location" in lowered:
        return None
    return name


def parse_priority(text: str) -> str:
    priority = text.strip().strip(".").lower()
    return priority if priority in PRIORITIES else DEFAULT_PRIORITY


# --- 3. THE SERVICE HANDLER ---

class GeminiService:
    """Gemini text and vision calls with cached, fail-soft results.

    ``model`` and ``vision_model`` may be passed in directly; anything with an
    async ``generate_content_async`` returning an object with ``.text`` works.
    """

    def __init__(self, cache, api_key=None, model_name="gemini-1.5-flash",
                 vision_model_name="gemini-1.5-flash", timeout=5.0, transport=None,
                 model=None, vision_model=None):
        self.cache = cache
        self.api_key = api_key
        self.model_name = model_name
        self.vision_model_name = vision_model_name
        self.timeout = timeout
        self.transport = transport
        self.model = model
        self.vision_model = vision_model

    @property
    def enabled(self) -> bool:
        return self.model is not None

    @property
    def _request_options(self) -> dict:
        return {"timeout": self.timeout}

    def load_model(self):
        if self.model is not None:
            return
        if not self.api_key:
            logger.warning("GEMINI_API_KEY not set; AI features will return fallbacks")
            return
        genai.configure(api_key=self.api_key)
        self.model = genai.GenerativeModel(self.model_name)
        self.vision_model = genai.GenerativeModel(self.vision_model_name)
        logger.info("Gemini models ready (%s, %s)", self.model_name, self.vision_model_name)

    async def extract_location(self, description: str) -> Optional[GeocodingResult]:
        if self.model is None:
            return None

        async def produce():
            response = await self.model.generate_content_async(
                LOCATION_PROMPT.format(description=description), request_options=self._request_options
            )
            name = parse_location(response.text)
            if name is None:
                logger.warning("No location found in description")
                return None
            logger.info("Location extracted: %s", name)
            # Coordinates are filled in by the geocoder
            return GeocodingResult(location_name=name, lat=0, lng=0, formatted_address=name).model_dump()

        try:
            payload = await self.cache.remember(hashed_key("location_extraction", description), LOCATION_TTL, produce)
        except Exception as exc:
            logger.error("Error extracting location with Gemini: %s", exc)
            return None
        return GeocodingResult.model_validate(payload) if payload else None

    async def _download_image(self, image_url: str) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport,
                                     follow_redirects=True) as client:
            response = await client.get(image_url)
            response.raise_for_status()
            content = response.content

        with Image.open(io.BytesIO(content)) as image:
            image.verify()
            mime_type = Image.MIME.get(image.format, "image/jpeg")
        return {"mime_type": mime_type, "data": content}

    async def verify_image(self, image_url: str, disaster_context: Optional[str] = None) -> ImageVerificationResult:
        if self.vision_model is None:
            return FALLBACK_VERIFICATION.model_copy()

        async def produce():
            blob = await self._download_image(image_url)
            context = f"\nDisaster Context: {disaster_context}\n" if disaster_context else ""
            response = await self.vision_model.generate_content_async(
                [VERIFICATION_PROMPT.format(context=context), blob], request_options=self._request_options
            )
            result = parse_verification(response.text)
            logger.info("Image verified: authentic=%s confidence=%s", result.is_authentic, result.confidence)
            return result.model_dump()

        try:
            payload = await self.cache.remember(hashed_key("image_verification", image_url), VERIFICATION_TTL, produce)
        except Exception as exc:
            logger.error("Error verifying image %s: %s", image_url, exc)
            return FALLBACK_VERIFICATION.model_copy()
        return ImageVerificationResult.model_validate(payload)

    async def classify_priority(self, content: str) -> str:
        if self.model is None:
            return DEFAULT_PRIORITY

        async def produce():
            response = await self.model.generate_content_async(
                PRIORITY_PROMPT.format(content=content), request_options=self._request_options
            )
            return parse_priority(response.text)

        try:
            return await self.cache.remember(hashed_key("priority_classification", content), PRIORITY_TTL, produce)
        except Exception as exc:
            logger.error("Error classifying priority: %s", exc)
            return DEFAULT_PRIORITY
