"""Tests for the DALL-E, Midjourney, Stable Diffusion and mock adapters."""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from knowledge_search.images.adapters.dalle import DalleAdapter, parse_retry_after
from knowledge_search.images.adapters.midjourney import MidjourneyAdapter
from knowledge_search.images.adapters.mock import MockAdapter
from knowledge_search.images.adapters.stable_diffusion import StableDiffusionAdapter
from knowledge_search.images.discovery import ServiceRegistry
from knowledge_search.images.exceptions import GenerationError, GenerationErrorType
from knowledge_search.images.prompts.catalog import ImageGenerationParams
from knowledge_search.images.prompts.engine import PromptTemplateEngine


def make_response(status_code: int, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


def patch_client(mock_client_class, post=None, get=None) -> AsyncMock:
    """Wire a patched httpx.AsyncClient class to a single client mock."""
    mock_client = AsyncMock()
    if post is not None:
        mock_client.post = AsyncMock(side_effect=post if isinstance(post, list) else None,
                                     return_value=post)
    if get is not None:
        mock_client.get = AsyncMock(side_effect=get if isinstance(get, list) else None,
                                    return_value=get)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestDalleAdapter:
    """Tests for DalleAdapter."""

    def test_requires_api_key(self, monkeypatch):
        from knowledge_search.config import settings

        monkeypatch.setattr(settings, "DALLE_API_KEY", "")
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        with pytest.raises(ValueError):
            DalleAdapter()

    def test_limits(self):
        limits = DalleAdapter(api_key="k").limits
        assert limits.max_prompt_length == 4000
        assert limits.rate_limit_per_minute == 5
        assert limits.rate_limit_per_hour == 200

    def test_parse_retry_after(self):
        assert parse_retry_after("Rate limit reached. Try again in 20s.") == 20.0
        assert parse_retry_after("Slow down") == 60.0

    @pytest.mark.asyncio
    async def test_generate_success(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(
                mock_client_class,
                post=make_response(200, {"data": [{"url": "https://img/1.png"}]}),
            )
            adapter = DalleAdapter(api_key="k")
            result = await adapter.generate_image("a caveman in a hoodie")

        assert result.success is True
        assert result.image_url == "https://img/1.png"
        body = mock_client.post.call_args.kwargs["json"]
        assert body["size"] == "1024x1024"
        assert body["quality"] == "hd"
        assert body["style"] == "vivid"
        assert body["n"] == 1

    @pytest.mark.asyncio
    async def test_empty_data_is_unknown_error(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(mock_client_class, post=make_response(200, {"data": []}))
            with pytest.raises(GenerationError) as exc_info:
                await DalleAdapter(api_key="k").generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.UNKNOWN_ERROR
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,payload,expected,retryable,retry_after",
        [
            (
                400,
                {"error": {"code": "content_policy_violation", "message": "blocked"}},
                GenerationErrorType.CONTENT_POLICY_VIOLATION,
                False,
                None,
            ),
            (400, {"error": {"message": "bad"}}, GenerationErrorType.INVALID_PROMPT, False, None),
            (401, {}, GenerationErrorType.AUTHENTICATION_ERROR, False, None),
            (
                429,
                {"error": {"message": "Rate limit reached. Try again in 12s"}},
                GenerationErrorType.RATE_LIMITED,
                True,
                12.0,
            ),
            (503, None, GenerationErrorType.SERVICE_UNAVAILABLE, True, 30.0),
        ],
    )
    async def test_error_mapping(self, status, payload, expected, retryable, retry_after):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(mock_client_class, post=make_response(status, payload))
            with pytest.raises(GenerationError) as exc_info:
                await DalleAdapter(api_key="k").generate_image("prompt")

        error = exc_info.value
        assert error.error_type == expected
        assert error.retryable is retryable
        assert error.retry_after == retry_after
        assert error.service == "dalle"

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(mock_client_class)
            mock_client.post = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
            with pytest.raises(GenerationError) as exc_info:
                await DalleAdapter(api_key="k").generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.TIMEOUT
        assert exc_info.value.retry_after == 5.0

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_service_unavailable(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(mock_client_class)
            mock_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(GenerationError) as exc_info:
                await DalleAdapter(api_key="k").generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_prompt_too_long_is_not_sent(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            adapter = DalleAdapter(api_key="k")
            with pytest.raises(GenerationError) as exc_info:
                await adapter.generate_image("x" * 4001)
            mock_client_class.assert_not_called()
        assert exc_info.value.error_type == GenerationErrorType.INVALID_PROMPT
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_local_rate_limit(self):
        clock = FakeClock()
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(
                mock_client_class, post=make_response(200, {"data": [{"url": "u"}]})
            )
            adapter = DalleAdapter(api_key="k", clock=clock)
            for _ in range(5):
                await adapter.generate_image("prompt")

            with pytest.raises(GenerationError) as exc_info:
                await adapter.generate_image("prompt")
            assert exc_info.value.error_type == GenerationErrorType.RATE_LIMITED
            assert 0 < exc_info.value.retry_after <= 60

            clock.now += 61
            result = await adapter.generate_image("prompt")
            assert result.success is True

    @pytest.mark.asyncio
    async def test_error_rate_tracks_outcomes(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(
                mock_client_class,
                post=[make_response(200, {"data": [{"url": "u"}]}), make_response(500, None)],
            )
            adapter = DalleAdapter(api_key="k")
            await adapter.generate_image("prompt")
            with pytest.raises(GenerationError):
                await adapter.generate_image("prompt")
        assert adapter.error_rate == 0.5

    @pytest.mark.asyncio
    async def test_service_status(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(mock_client_class, get=make_response(200, {"data": []}))
            status = await DalleAdapter(api_key="k").get_service_status()
        assert status.available is True
        assert status.response_time is not None

    @pytest.mark.asyncio
    async def test_service_status_on_transport_error(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(mock_client_class)
            mock_client.get = AsyncMock(side_effect=httpx.ConnectError("down"))
            status = await DalleAdapter(api_key="k").get_service_status()
        assert status.available is False


class TestMidjourneyAdapter:
    """Tests for MidjourneyAdapter submit-and-poll flow."""

    @pytest.mark.asyncio
    async def test_generate_polls_until_complete(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(
                mock_client_class,
                post=make_response(200, {"id": "job-1"}),
                get=[
                    make_response(200, {"status": "pending", "progress": 10}),
                    make_response(200, {"status": "processing", "progress": 60}),
                    make_response(
                        200, {"status": "completed", "imageUrl": "https://mj/1.png"}
                    ),
                ],
            )
            adapter = MidjourneyAdapter(api_key="k", poll_interval=0)
            result = await adapter.generate_image("prompt")

        assert result.image_url == "https://mj/1.png"
        assert mock_client.get.call_count == 3
        assert mock_client.get.call_args.args[0].endswith("/jobs/job-1")

    @pytest.mark.asyncio
    async def test_missing_job_id(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(mock_client_class, post=make_response(200, {}))
            with pytest.raises(GenerationError) as exc_info:
                await MidjourneyAdapter(api_key="k", poll_interval=0).generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.UNKNOWN_ERROR

    @pytest.mark.asyncio
    async def test_failed_job(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(
                mock_client_class,
                post=make_response(200, {"id": "job-2"}),
                get=make_response(200, {"status": "failed", "error": "moderation"}),
            )
            with pytest.raises(GenerationError) as exc_info:
                await MidjourneyAdapter(api_key="k", poll_interval=0).generate_image("prompt")
        assert exc_info.value.message == "moderation"
        assert exc_info.value.details["job_id"] == "job-2"

    @pytest.mark.asyncio
    async def test_poll_exhaustion_is_timeout(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(
                mock_client_class,
                post=make_response(200, {"id": "job-3"}),
                get=make_response(200, {"status": "pending"}),
            )
            adapter = MidjourneyAdapter(api_key="k", poll_interval=0, max_poll_attempts=3)
            with pytest.raises(GenerationError) as exc_info:
                await adapter.generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.TIMEOUT
        assert exc_info.value.retry_after == 60.0
        assert exc_info.value.details["attempts"] == 3

    @pytest.mark.asyncio
    async def test_poll_transport_error_keeps_polling(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(
                mock_client_class,
                post=make_response(200, {"id": "job-4"}),
                get=[
                    httpx.ConnectError("blip"),
                    make_response(200, {"status": "completed", "imageUrl": "u"}),
                ],
            )
            result = await MidjourneyAdapter(api_key="k", poll_interval=0).generate_image("p")
        assert result.image_url == "u"

    @pytest.mark.asyncio
    async def test_rate_limit_uses_body_hint(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(
                mock_client_class, post=make_response(429, {"message": "slow", "retryAfter": 45})
            )
            with pytest.raises(GenerationError) as exc_info:
                await MidjourneyAdapter(api_key="k").generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.RATE_LIMITED
        assert exc_info.value.retry_after == 45.0

    @pytest.mark.asyncio
    async def test_rate_limit_default_hint(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(mock_client_class, post=make_response(429, {}))
            with pytest.raises(GenerationError) as exc_info:
                await MidjourneyAdapter(api_key="k").generate_image("prompt")
        assert exc_info.value.retry_after == 120.0

    @pytest.mark.asyncio
    async def test_server_error(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(mock_client_class, post=make_response(502, None))
            with pytest.raises(GenerationError) as exc_info:
                await MidjourneyAdapter(api_key="k").generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.SERVICE_UNAVAILABLE
        assert exc_info.value.retry_after == 60.0

    def test_prompt_limit(self):
        assert MidjourneyAdapter(api_key="k").limits.max_prompt_length == 2000


class TestStableDiffusionAdapter:
    """Tests for StableDiffusionAdapter."""

    @pytest.mark.asyncio
    async def test_generate_returns_data_url(self):
        encoded = base64.b64encode(b"png-bytes").decode()
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(
                mock_client_class,
                post=make_response(
                    200, {"artifacts": [{"base64": encoded, "finishReason": "SUCCESS"}]}
                ),
            )
            result = await StableDiffusionAdapter(api_key="k").generate_image("prompt")

        assert result.image_url == f"data:image/png;base64,{encoded}"
        url = mock_client.post.call_args.args[0]
        assert url.endswith("/text-to-image")
        body = mock_client.post.call_args.kwargs["json"]
        assert body["text_prompts"] == [{"text": "prompt", "weight": 1}]
        assert body["steps"] == 30

    @pytest.mark.asyncio
    async def test_filtered_artifact_is_content_policy(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(
                mock_client_class,
                post=make_response(
                    200, {"artifacts": [{"base64": "", "finishReason": "CONTENT_FILTERED"}]}
                ),
            )
            with pytest.raises(GenerationError) as exc_info:
                await StableDiffusionAdapter(api_key="k").generate_image("prompt")
        assert exc_info.value.error_type == GenerationErrorType.CONTENT_POLICY_VIOLATION
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,payload,expected",
        [
            (400, {"message": "Invalid content detected"}, GenerationErrorType.CONTENT_POLICY_VIOLATION),
            (400, {"message": "bad height"}, GenerationErrorType.INVALID_PROMPT),
            (401, {}, GenerationErrorType.AUTHENTICATION_ERROR),
            (402, {}, GenerationErrorType.QUOTA_EXCEEDED),
            (429, {}, GenerationErrorType.RATE_LIMITED),
            (500, None, GenerationErrorType.SERVICE_UNAVAILABLE),
        ],
    )
    async def test_error_mapping(self, status, payload, expected):
        with patch("httpx.AsyncClient") as mock_client_class:
            patch_client(mock_client_class, post=make_response(status, payload))
            with pytest.raises(GenerationError) as exc_info:
                await StableDiffusionAdapter(api_key="k").generate_image("prompt")
        assert exc_info.value.error_type == expected

    @pytest.mark.asyncio
    async def test_list_engines_falls_back_to_configured(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(mock_client_class)
            mock_client.get = AsyncMock(side_effect=httpx.ConnectError("down"))
            adapter = StableDiffusionAdapter(api_key="k", engine_id="sdxl")
            assert await adapter.list_engines() == ["sdxl"]


class TestMockAdapter:
    """Tests for the offline MockAdapter."""

    @pytest.mark.asyncio
    async def test_returns_png_data_url(self):
        result = await MockAdapter().generate_image("prompt")
        assert result.image_url.startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_should_fail(self):
        adapter = MockAdapter(name="broken", should_fail=True, seed=1)
        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image("prompt")
        assert exc_info.value.retryable is True
        assert exc_info.value.service == "broken"
        assert adapter.request_count == 1

    @pytest.mark.asyncio
    async def test_health_flag(self):
        assert await MockAdapter(healthy=True).is_available() is True
        assert await MockAdapter(healthy=False).is_available() is False


def built_prompts():
    """Every valid catalog selection rendered by the default engine."""
    engine = PromptTemplateEngine()
    prompts = []
    for pose in engine.poses.values():
        for outfit_id in pose.compatible_outfits:
            for footwear_id in engine.outfits[outfit_id].compatible_footwear:
                for prop_id in [None, *engine.props]:
                    params = ImageGenerationParams(
                        pose=pose.id, outfit=outfit_id, footwear=footwear_id, prop=prop_id
                    )
                    if engine.validate(params).is_valid:
                        prompts.append((params, engine.build_prompt(params)))
    framed = ImageGenerationParams(
        pose="holding-cave-map",
        outfit="hoodie-sweatpants",
        footwear="air-jordan-11-bred",
        prop="cave-map",
        frame_type="onboarding",
        frame_id="02B",
    )
    prompts.append((framed, engine.build_prompt(framed)))
    return engine, prompts


REAL_ADAPTERS = [
    lambda: DalleAdapter(api_key="k"),
    lambda: MidjourneyAdapter(api_key="k", poll_interval=0),
    lambda: StableDiffusionAdapter(api_key="k"),
    lambda: MockAdapter(),
]


class TestBuiltPromptRendering:
    """Engine-built prompts fit every provider's limit."""

    @pytest.mark.parametrize("make_adapter", REAL_ADAPTERS)
    def test_every_selection_fits(self, make_adapter):
        adapter = make_adapter()
        engine, prompts = built_prompts()
        limit = adapter.limits.max_prompt_length

        for params, prompt in prompts:
            rendered = adapter.render_prompt(prompt)
            adapter._check_prompt(rendered)
            assert adapter._prompt_length(rendered) <= limit
            for fragment in (
                engine.poses[params.pose].prompt_fragment,
                engine.outfits[params.outfit].prompt_fragment,
                engine.footwear[params.footwear].prompt_fragment,
            ):
                assert fragment in rendered
            if params.prop:
                assert engine.props[params.prop].prompt_fragment in rendered

    def test_short_prompt_is_untouched(self):
        adapter = DalleAdapter(api_key="k")
        assert adapter.render_prompt("a wolf in a cave") == "a wolf in a cave"

    @pytest.mark.asyncio
    async def test_dalle_receives_fitted_prompt(self):
        _, prompts = built_prompts()
        prompt = prompts[-1][1]
        assert len(prompt) > 4000
        registry = ServiceRegistry()
        registry.register(DalleAdapter(api_key="k"))

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(
                mock_client_class,
                post=make_response(200, {"data": [{"url": "https://img/1.png"}]}),
            )
            result, name = await registry.generate_with_failover(prompt)

        assert (result.image_url, name) == ("https://img/1.png", "dalle")
        sent = mock_client.post.call_args.kwargs["json"]["prompt"]
        assert len(sent) <= 4000
        assert sent.startswith("Confident gray and cream wolf")

    @pytest.mark.asyncio
    async def test_midjourney_sends_negatives_as_no_parameter(self):
        _, prompts = built_prompts()
        registry = ServiceRegistry()
        registry.register(MidjourneyAdapter(api_key="k", poll_interval=0))

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(
                mock_client_class,
                post=make_response(200, {"id": "job-1"}),
                get=make_response(200, {"status": "completed", "imageUrl": "https://mj/1.png"}),
            )
            result, _ = await registry.generate_with_failover(prompts[-1][1])

        assert result.image_url == "https://mj/1.png"
        sent = mock_client.post.call_args.kwargs["json"]["prompt"]
        assert len(sent) <= 2000
        assert "\n" not in sent
        assert "NEGATIVE PROMPT" not in sent
        assert " --no deformed hands" in sent

    @pytest.mark.asyncio
    async def test_stable_diffusion_sends_weighted_negative_prompt(self):
        _, prompts = built_prompts()
        registry = ServiceRegistry()
        registry.register(StableDiffusionAdapter(api_key="k"))
        encoded = base64.b64encode(b"png-bytes").decode()

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = patch_client(
                mock_client_class,
                post=make_response(
                    200, {"artifacts": [{"base64": encoded, "finishReason": "SUCCESS"}]}
                ),
            )
            await registry.generate_with_failover(prompts[-1][1])

        positive, negative = mock_client.post.call_args.kwargs["json"]["text_prompts"]
        assert positive["weight"] == 1
        assert len(positive["text"]) <= 2000
        assert "NEGATIVE PROMPT" not in positive["text"]
        assert negative["weight"] == -1
        assert negative["text"].startswith("deformed hands, extra fingers")
