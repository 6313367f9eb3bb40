"""Tests for provider validation, pricing and the factory."""
from unittest.mock import MagicMock, patch

import pytest

from app.services.image_generation import ImageGenerationError, ImageGenerationRequest, ImageProviderFactory
from app.services.image_generation.providers.mock import MockProvider
from app.services.image_generation.providers.openai import OpenAIProvider


def _mock(**config):
    return MockProvider({"min_delay": 0, "max_delay": 0, "failure_rate": 0, **config})


class TestMockProvider:
    @pytest.mark.parametrize(
        "size,style,expected",
        [
            ("512x512", "realistic", 5),
            ("1024x1024", "realistic", 8),
            ("512x512", "artistic", 7),
            ("1024x1024", "artistic", 11),
            ("1024x1024", "anime", 10),
            ("640x480", "unknown", 5),
        ],
    )
    def test_token_cost(self, size, style, expected):
        assert _mock().calculate_token_cost(size=size, style=style) == expected

    def test_prompt_rules(self):
        provider = _mock()
        assert provider.validate_prompt("a red fox") == (True, None)
        assert provider.validate_prompt(None)[0] is False
        assert provider.validate_prompt(123) == (False, "Prompt must be a string")
        assert provider.validate_prompt("  ab  ")[1] == "Prompt must be at least 3 characters long"
        assert provider.validate_prompt("x" * 1001)[1] == "Prompt must be less than 1000 characters"

    def test_generate_returns_hosted_urls(self):
        result = _mock().generate(ImageGenerationRequest(prompt="a red fox", size="1024x1024"))
        assert result.provider == "mock"
        assert result.image_content is None
        assert result.image_url.startswith("https://picsum.photos/1024/1024")
        assert result.thumbnail_url.startswith("https://picsum.photos/256/256")

    def test_simulated_failure(self):
        with pytest.raises(ImageGenerationError):
            _mock(failure_rate=1).generate(ImageGenerationRequest(prompt="a red fox"))


class TestOpenAIProvider:
    def test_unconfigured(self):
        provider = OpenAIProvider({"api_key": ""})
        assert provider.is_available() is False
        assert provider.get_status()["status"] == "not_initialized"
        with pytest.raises(ImageGenerationError) as exc:
            provider.generate(ImageGenerationRequest(prompt="a red fox"))
        assert exc.value.detail["http_status"] == 401

    @pytest.mark.parametrize("prompt", ["A Naked statue", "weapons on a table", "BLOODY moon"])
    def test_banned_terms(self, prompt):
        valid, error = OpenAIProvider({}).validate_prompt(prompt)
        assert valid is False
        assert "inappropriate content" in error

    def test_longer_prompt_limit(self):
        assert OpenAIProvider({}).validate_prompt("x" * 3000) == (True, None)

    @pytest.mark.parametrize(
        "model,size,quality,expected",
        [
            (None, None, None, 8),
            ("dall-e-3", "1792x1024", "hd", 15),
            ("dall-e-2", "256x256", None, 3),
            ("dall-e-2", "1792x1024", None, 5),
        ],
    )
    def test_token_cost(self, model, size, quality, expected):
        assert OpenAIProvider({}).calculate_token_cost(size=size, model=model, quality=quality) == expected

    def test_option_mapping(self):
        options = OpenAIProvider({}).map_options(
            ImageGenerationRequest(prompt="x", size="300x300", style="artistic", model="dall-e-9")
        )
        assert options == {"model": "dall-e-3", "size": "1024x1024", "quality": "standard", "style": "vivid"}

    @patch("app.services.image_generation.providers.openai.httpx.Client")
    def test_generate_downloads_image(self, client_cls):
        provider = OpenAIProvider({"api_key": "sk-test"})
        provider.client = MagicMock()
        provider.client.images.generate.return_value.data = [
            MagicMock(url="https://cdn.example/img.png", revised_prompt="a fox")
        ]
        http = client_cls.return_value.__enter__.return_value
        http.get.return_value.content = b"png-bytes"

        result = provider.generate(ImageGenerationRequest(prompt="a fox", model="dall-e-2", size="512x512"))

        assert result.image_content == b"png-bytes"
        assert result.image_url == "https://cdn.example/img.png"
        params = provider.client.images.generate.call_args.kwargs
        assert params["model"] == "dall-e-2"
        assert "quality" not in params


class TestFactory:
    def test_unknown_provider(self):
        settings = MagicMock(ai_provider="mock", ai_timeout=1, ai_retries=1)
        with pytest.raises(ValueError, match="not found|not supported"):
            ImageProviderFactory.create_from_settings(settings, "dalle-99")

    def test_override_wins_over_settings(self):
        settings = MagicMock(
            ai_provider="openai",
            ai_timeout=1,
            ai_retries=1,
            mock_min_delay_seconds=0,
            mock_max_delay_seconds=0,
            mock_failure_rate=0,
        )
        assert ImageProviderFactory.create_from_settings(settings, "mock").name == "mock"

    def test_available_providers(self):
        assert ImageProviderFactory.get_available_providers() == ["mock", "openai"]
