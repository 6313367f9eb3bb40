"""
Generation runner: centralized generate-with-retry, failure classification, and observability.
Retry budget comes from AI_RETRIES; the provider call goes through the image provider circuit breaker.
"""
import logging
import random
import time
from typing import Any

import pybreaker

from app.services.circuit_breaker import get_circuit_breaker
from app.services.image_generation.base import (
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ImageGenerationError,
)
from app.services.image_generation.failure_types import classify_failure

logger = logging.getLogger(__name__)

LOG_KEYS = (
    "provider",
    "model_version",
    "attempt_number",
    "success_after_retry",
    "failure_type",
    "retry_allowed",
)


def generate_with_retry(
    provider: ImageGenerationProvider,
    request: ImageGenerationRequest,
    settings: Any,
    *,
    use_breaker: bool = True,
) -> ImageGenerationResponse:
    """
    Generate image with retry budget and classification.
    Non-retriable failures (content policy, bad key) are raised on the first attempt.
    An open circuit breaker is reported as ImageGenerationError without calling the provider.
    """
    max_attempts = max(1, int(getattr(settings, "ai_retries", 3)))
    backoff_seconds = float(getattr(settings, "ai_retry_backoff_seconds", 2.0))
    model_version = request.model or ""
    breaker = get_circuit_breaker(f"image_provider:{provider.name}") if use_breaker else None

    last_error: ImageGenerationError | None = None
    attempt = 0

    while attempt < max_attempts:
        attempt += 1
        try:
            if breaker is not None:
                result = breaker.call(provider.generate, request)
            else:
                result = provider.generate(request)
            if attempt > 1:
                _log_structured(
                    provider=provider.name,
                    model_version=model_version,
                    attempt_number=attempt,
                    success_after_retry=True,
                )
            return result
        except pybreaker.CircuitBreakerError as e:
            raise ImageGenerationError(
                "Image provider temporarily unavailable",
                {"circuit_open": True, "provider": provider.name},
            ) from e
        except ImageGenerationError as e:
            last_error = e
            detail = e.detail
            http_status = detail.get("http_status")
            failure_type, retry_allowed = classify_failure(http_status, detail, str(e))
            detail["failure_type"] = failure_type.value

            _log_structured(
                provider=provider.name,
                model_version=model_version,
                attempt_number=attempt,
                success_after_retry=False,
                failure_type=failure_type.value,
                retry_allowed=retry_allowed,
            )

            if not retry_allowed or attempt >= max_attempts:
                raise

            delay = backoff_seconds * attempt + random.uniform(0, 1)
            logger.info(
                "image_generation_retry_scheduled",
                extra={
                    "provider": provider.name,
                    "attempts": attempt,
                    "error": str(e),
                },
            )
            time.sleep(delay)

    if last_error is not None:
        raise last_error
    raise RuntimeError("generate_with_retry: no result and no error")


def _log_structured(**kwargs: Any) -> None:
    extra = {k: v for k, v in kwargs.items() if k in LOG_KEYS and v is not None}
    logger.info("image_generation_result", extra=extra)
