"""
Mock provider for development and tests: placeholder images, no API key.
"""
import random
import time
import uuid
from datetime import datetime, timezone

from app.services.image_generation.base import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
    round_half_up,
)

PICSUM_URL = "https://picsum.photos"


class MockProvider(ImageGenerationProvider):
    """Simulated generation with configurable delay and failure rate."""

    name = "mock"

    PRICING = {
        "base_cost": 5,
        "size_multipliers": {"512x512": 1, "1024x1024": 1.6},
        "style_multipliers": {"realistic": 1, "artistic": 1.4, "cartoon": 1.2, "anime": 1.3},
        "currency": "tokens",
    }

    def __init__(self, config: dict):
        super().__init__(config)
        self.min_delay = float(config.get("min_delay", 1.0))
        self.max_delay = float(config.get("max_delay", 3.0))
        self.failure_rate = float(config.get("failure_rate", 0.05))

    def is_available(self) -> bool:
        return True

    def get_available_models(self) -> list[dict]:
        return [
            {
                "id": "mock-realistic",
                "name": "Mock Realistic",
                "description": "Realistic image generation (mock)",
                "max_prompt_length": 1000,
                "supported_sizes": ["512x512", "1024x1024"],
            },
            {
                "id": "mock-artistic",
                "name": "Mock Artistic",
                "description": "Artistic style generation (mock)",
                "max_prompt_length": 1000,
                "supported_sizes": ["512x512", "1024x1024"],
            },
        ]

    def get_pricing(self) -> dict:
        return self.PRICING

    def calculate_token_cost(self, size=None, style=None, model=None, quality=None) -> int:
        pricing = self.get_pricing()
        cost = float(pricing["base_cost"])
        cost *= pricing["size_multipliers"].get(size or "", 1)
        cost *= pricing["style_multipliers"].get(style or "", 1)
        return round_half_up(cost)

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "status": "operational",
            "message": "Mock provider is working (simulated)",
            "uptime": "100%",
            "response_time": f"{self.min_delay:g}-{self.max_delay:g} seconds (simulated)",
        }

    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        started = time.monotonic()
        if self.max_delay > 0:
            time.sleep(random.uniform(self.min_delay, self.max_delay))

        if self.failure_rate > 0 and random.random() < self.failure_rate:
            raise ImageGenerationError("Mock AI generation failed (simulated error)", {"simulated": True})

        image_id = uuid.uuid4().hex[:8]
        side = 1024 if request.size == "1024x1024" else 512
        return ImageGenerationResponse(
            model=request.model or "mock-realistic",
            provider=self.name,
            image_url=f"{PICSUM_URL}/{side}/{side}?random={image_id}",
            thumbnail_url=f"{PICSUM_URL}/256/256?random={image_id}",
            metadata={
                "provider": self.name,
                "processing_time_ms": int((time.monotonic() - started) * 1000),
                "image_id": image_id,
                "generated_at": datetime.now(timezone.utc).isoformat(),
            },
        )
