"""
OpenAI DALL-E provider for image generation.
"""
import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, OpenAIError

from app.services.image_generation.base import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
    round_half_up,
)

OPENAI_MAX_PROMPT_LENGTH = 4000

BANNED_TERMS = (
    "nude", "naked", "explicit", "porn", "violence", "gore",
    "blood", "weapon", "drug", "illegal",
)

SUPPORTED_SIZES = ("256x256", "512x512", "1024x1024", "1792x1024", "1024x1792")

ERROR_MESSAGES = {
    "rate_limit_exceeded": "Rate limit exceeded. Please try again later.",
    "content_policy_violation": "Content policy violation. Please modify your prompt.",
    "billing_not_active": "OpenAI billing not active. Please check your account.",
}


class OpenAIProvider(ImageGenerationProvider):
    """OpenAI DALL-E image generation provider."""

    name = "openai"
    max_prompt_length = OPENAI_MAX_PROMPT_LENGTH

    PRICING = {
        "base_cost": 5,
        "models": {
            "dall-e-3": {"1024x1024": 8, "1792x1024": 10, "1024x1792": 10},
            "dall-e-2": {"256x256": 3, "512x512": 5, "1024x1024": 7},
        },
        "quality_multipliers": {"standard": 1, "hd": 1.5},
        "currency": "tokens",
    }

    def __init__(self, config: dict):
        super().__init__(config)
        self.api_key = config.get("api_key")
        self.organization = config.get("organization") or None
        self.default_model = config.get("model") or "dall-e-3"
        self.timeout = config.get("timeout", 30.0)

        if self.api_key:
            self.client = OpenAI(
                api_key=self.api_key,
                organization=self.organization,
                timeout=self.timeout,
                max_retries=0,
            )
        else:
            self.client = None

    def is_available(self) -> bool:
        """Check if OpenAI is configured."""
        return bool(self.api_key and self.client)

    def get_available_models(self) -> list[dict]:
        return [
            {
                "id": "dall-e-3",
                "name": "DALL-E 3",
                "description": "Latest OpenAI image generation model",
                "max_prompt_length": 4000,
                "supported_sizes": ["1024x1024", "1792x1024", "1024x1792"],
                "features": ["high_quality", "natural_style", "vivid_style"],
            },
            {
                "id": "dall-e-2",
                "name": "DALL-E 2",
                "description": "Previous generation model",
                "max_prompt_length": 1000,
                "supported_sizes": ["256x256", "512x512", "1024x1024"],
                "features": ["standard_quality"],
            },
        ]

    def get_pricing(self) -> dict:
        return self.PRICING

    def calculate_token_cost(self, size=None, style=None, model=None, quality=None) -> int:
        pricing = self.get_pricing()
        model = model or "dall-e-3"
        size = size or "1024x1024"
        cost = float(pricing["models"].get(model, {}).get(size, pricing["base_cost"]))
        cost *= pricing["quality_multipliers"].get(quality or "", 1)
        return round_half_up(cost)

    def validate_prompt(self, prompt) -> tuple[bool, str | None]:
        valid, error = super().validate_prompt(prompt)
        if not valid:
            return valid, error

        lower = prompt.lower()
        for term in BANNED_TERMS:
            if term in lower:
                return False, f"Prompt contains potentially inappropriate content: {term}"
        return True, None

    def map_options(self, request: ImageGenerationRequest) -> dict:
        """Translate size/style/model/quality into OpenAI parameters."""
        model = request.model or self.default_model
        if model not in ("dall-e-2", "dall-e-3"):
            model = "dall-e-3"
        return {
            "model": model,
            "size": request.size if request.size in SUPPORTED_SIZES else "1024x1024",
            "quality": request.quality or "standard",
            "style": "vivid" if request.style == "artistic" else "natural",
        }

    def get_status(self) -> dict:
        if not self.is_available():
            return {"name": self.name, "status": "not_initialized", "message": "OpenAI provider not initialized"}
        try:
            self.client.models.list()
        except OpenAIError as e:
            return {
                "name": self.name,
                "status": "error",
                "message": f"OpenAI API error: {e}",
                "uptime": "unknown",
                "response_time": "unknown",
            }
        return {
            "name": self.name,
            "status": "operational",
            "message": "OpenAI API is working",
            "uptime": "99.9%",
            "response_time": "2-10 seconds",
        }

    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        if not self.is_available():
            raise ImageGenerationError("OpenAI provider not initialized", {"http_status": 401})

        options = self.map_options(request)
        params = {
            "model": options["model"],
            "prompt": request.prompt,
            "n": 1,
            "size": options["size"],
            "response_format": "url",
        }
        # quality/style are dall-e-3 only
        if options["model"] == "dall-e-3":
            params["quality"] = options["quality"]
            params["style"] = options["style"]

        try:
            response = self.client.images.generate(**params)
        except APIStatusError as e:
            code = getattr(e, "code", None)
            message = ERROR_MESSAGES.get(code) or f"OpenAI generation failed: {e}"
            raise ImageGenerationError(message, {"http_status": e.status_code, "code": code}) from e
        except (APITimeoutError, APIConnectionError) as e:
            raise ImageGenerationError(f"OpenAI generation failed: {e}") from e

        data = response.data[0]
        image_url = data.url

        try:
            with httpx.Client(timeout=self.timeout) as http_client:
                img_response = http_client.get(image_url)
                img_response.raise_for_status()
                content = img_response.content
        except httpx.HTTPError as e:
            raise ImageGenerationError(f"Failed to download generated image: {e}") from e

        return ImageGenerationResponse(
            model=options["model"],
            provider=self.name,
            image_content=content,
            image_url=image_url,
            thumbnail_url=image_url,
            metadata={
                "provider": self.name,
                "model": options["model"],
                "size": options["size"],
                "quality": options["quality"],
                "style": options["style"],
                "revised_prompt": getattr(data, "revised_prompt", None),
            },
        )
