import asyncio
import io

import httpx
from PIL import Image

from conftest import FakeModel
from disaster_response.ai_core.service import (GeminiService, parse_location, parse_priority,
                                                parse_verification)
from disaster_response.cache import MemoryCache


def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color="red").save(buffer, format="PNG")
    return buffer.getvalue()


def image_transport(content: bytes) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(200, content=content))


def test_parse_verification_reads_json_block():
    text = 'Here you go:\n```json\n{"is_authentic": false, "confidence": 85, "analysis": "edited sky", ' \
           '"detected_manipulations": ["cloned smoke"]}\n```'
    result = parse_verification(text)
    assert result.is_authentic is False
    assert result.confidence == 85
    assert result.detected_manipulations == ["cloned smoke"]


def test_parse_verification_bad_json_assumes_authentic():
    result = parse_verification("Result: {is_authentic: maybe}")
    assert result.is_authentic is True
    assert result.confidence == 50


def test_parse_verification_out_of_range_confidence_falls_back():
    result = parse_verification('{"is_authentic": true, "confidence": 150}')
    assert result.confidence == 50


def test_parse_verification_keyword_heuristic():
    manipulated = parse_verification("This looks manipulated, high chance of manipulation.")
    assert manipulated.is_authentic is False
    assert manipulated.confidence == 80
    assert manipulated.detected_manipulations == ["Potential editing detected"]

    plain = parse_verification("Looks like a real flood scene.")
    assert plain.is_authentic is True
    assert plain.confidence == 40


def test_parse_location_and_priority():
    assert parse_location('"Manhattan, NYC"\n') == "Manhattan, NYC"
    assert parse_location("null") is None
    assert parse_location("No location mentioned") is None
    assert parse_priority("URGENT") == "urgent"
    assert parse_priority("High.") == "high"
    assert parse_priority("probably bad") == "medium"


def test_without_models_everything_falls_back():
    service = GeminiService(MemoryCache())

    async def scenario():
        return (
            await service.extract_location("Flooding in Brooklyn"),
            await service.verify_image("https://example.com/a.jpg"),
            await service.classify_priority("SOS trapped on roof"),
        )

    location, verdict, priority = asyncio.run(scenario())
    assert service.enabled is False
    assert location is None
    assert verdict.is_authentic is True
    assert verdict.confidence == 30
    assert verdict.analysis == "Unable to verify image due to technical error"
    assert priority == "medium"


def test_extract_location_uses_model_and_cache():
    model = FakeModel("Brooklyn, NY")
    service = GeminiService(MemoryCache(), model=model)

    async def scenario():
        first = await service.extract_location("Flooding in Brooklyn")
        second = await service.extract_location("Flooding in Brooklyn")
        return first, second

    first, second = asyncio.run(scenario())
    assert first.location_name == "Brooklyn, NY"
    assert second.location_name == "Brooklyn, NY"
    assert len(model.prompts) == 1
    assert "Flooding in Brooklyn" in model.prompts[0]


def test_extract_location_none_when_model_finds_nothing():
    service = GeminiService(MemoryCache(), model=FakeModel("null"))
    assert asyncio.run(service.extract_location("Something happened")) is None


def test_verify_image_sends_downloaded_image():
    vision = FakeModel('{"is_authentic": true, "confidence": 92, "analysis": "consistent lighting"}')
    service = GeminiService(
        MemoryCache(),
        transport=image_transport(png_bytes()),
        model=FakeModel("unused"),
        vision_model=vision,
    )

    result = asyncio.run(service.verify_image("https://example.com/flood.png", "River flood"))

    assert result.is_authentic is True
    assert result.confidence == 92
    prompt, blob = vision.prompts[0]
    assert "Disaster Context: River flood" in prompt
    assert blob["mime_type"] == "image/png"


def test_verify_image_rejects_non_images_with_fallback():
    vision = FakeModel('{"is_authentic": false, "confidence": 99}')
    service = GeminiService(MemoryCache(), transport=image_transport(b"<html>not an image</html>"),
                            vision_model=vision)

    result = asyncio.run(service.verify_image("https://example.com/page.html"))

    assert result.confidence == 30
    assert vision.prompts == []


def test_classify_priority_normalises_model_output():
    service = GeminiService(MemoryCache(), model=FakeModel("HIGH"))
    assert asyncio.run(service.classify_priority("Bridge collapsed")) == "high"

    service = GeminiService(MemoryCache(), model=FakeModel("It depends"))
    assert asyncio.run(service.classify_priority("Some post")) == "medium"


def test_model_errors_fall_back():
    class Exploding:
        async def generate_content_async(self, contents, request_options=None):
            raise RuntimeError("quota exceeded")

    service = GeminiService(MemoryCache(), model=Exploding())

    async def scenario():
        return await service.extract_location("Fire"), await service.classify_priority("Fire")

    assert asyncio.run(scenario()) == (None, "medium")


def test_model_calls_carry_request_timeout():
    model = FakeModel("urgent")
    vision = FakeModel('{"is_authentic": true, "confidence": 80}')
    service = GeminiService(MemoryCache(), timeout=2.5, transport=image_transport(png_bytes()),
                            model=model, vision_model=vision)

    async def scenario():
        await service.extract_location("Fire on Elm St")
        await service.classify_priority("Fire on Elm St")
        await service.verify_image("https://example.com/fire.png")

    asyncio.run(scenario())

    assert model.request_options == [{"timeout": 2.5}, {"timeout": 2.5}]
    assert vision.request_options == [{"timeout": 2.5}]
