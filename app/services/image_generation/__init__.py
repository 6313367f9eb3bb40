"""
Image generation service with multi-provider support.
"""
from .base import (
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ImageGenerationError,
)
from .factory import ImageProviderFactory
from .runner import generate_with_retry
from .failure_types import FailureType, classify_failure

__all__ = [
    "ImageGenerationProvider",
    "ImageGenerationRequest",
    "ImageGenerationResponse",
    "ImageGenerationError",
    "ImageProviderFactory",
    "generate_with_retry",
    "FailureType",
    "classify_failure",
]
