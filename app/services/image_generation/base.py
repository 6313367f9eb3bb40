"""
Base classes and types for image generation providers.
Used by factory and all providers (mock, openai).
"""
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

MIN_PROMPT_LENGTH = 3
MAX_PROMPT_LENGTH = 1000


@dataclass
class ImageGenerationRequest:
    """Request for image generation."""
    prompt: str
    model: str | None = None
    size: str | None = None
    style: str | None = None
    quality: str | None = None
    extra_params: dict[str, Any] | None = None


@dataclass
class ImageGenerationResponse:
    """Response from image generation. Either bytes or a hosted URL (or both)."""
    model: str
    provider: str
    image_content: bytes | None = None
    image_url: str | None = None
    thumbnail_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ImageGenerationError(Exception):
    """Raised when generation fails; detail holds provider fields (http_status, code) for logging."""
    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ImageGenerationProvider(ABC):
    """Base class for image generation providers."""

    name = "base"
    max_prompt_length = MAX_PROMPT_LENGTH

    def __init__(self, config: dict) -> None:
        self.config = config

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured and available."""
        pass

    @abstractmethod
    def get_available_models(self) -> list[dict[str, Any]]:
        """Model catalog: id, name, description, max_prompt_length, supported_sizes."""
        pass

    def get_supported_models(self) -> list[str]:
        return [m["id"] for m in self.get_available_models()]

    @abstractmethod
    def get_pricing(self) -> dict[str, Any]:
        """Static price table in tokens."""
        pass

    def validate_prompt(self, prompt: Any) -> tuple[bool, str | None]:
        """Return (valid, error message)."""
        if not prompt or not isinstance(prompt, str):
            return False, "Prompt must be a string"
        if len(prompt.strip()) < MIN_PROMPT_LENGTH:
            return False, f"Prompt must be at least {MIN_PROMPT_LENGTH} characters long"
        if len(prompt) > self.max_prompt_length:
            return False, f"Prompt must be less than {self.max_prompt_length} characters"
        return True, None

    def calculate_token_cost(
        self,
        size: str | None = None,
        style: str | None = None,
        model: str | None = None,
        quality: str | None = None,
    ) -> int:
        cost = 5
        if size == "1024x1024":
            cost += 3
        if style == "artistic":
            cost += 2
        if quality == "hd":
            cost += 2
        return cost

    def get_status(self) -> dict[str, Any]:
        return {"name": self.name, "status": "unknown", "message": "Status check not implemented"}

    def get_info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "models": self.get_available_models(),
            "pricing": self.get_pricing(),
        }

    @abstractmethod
    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        """Generate image from request. Raises ImageGenerationError on failure."""
        pass
