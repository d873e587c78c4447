"""ProviderAdapter 单元测试

Mock litellm（acompletion / aimage_generation / aspeech / atranscription），
验证结果归一、异常分类、熔断器计数与流式 usage 上报。
"""

import asyncio
import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from aigateway.provider import (
    AnthropicAdapter,
    BreakerConfig,
    Capability,
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    ErrorKind,
    GatewayError,
    ImageRequest,
    OpenAIAdapter,
    SpeechRequest,
    Tenant,
    TranscriptionRequest,
    classify_error,
)


def _breaker(threshold: int = 5) -> CircuitBreaker:
    return CircuitBreaker(BreakerConfig(name="openai", failure_threshold=threshold))


def _completion(content: str = "Hi there", prompt: int = 10, completion: int = 5):
    """构造 Mock acompletion 返回"""
    response = MagicMock()
    response.id = "chatcmpl-123"
    choice = MagicMock()
    choice.message.content = content
    choice.finish_reason = "stop"
    response.choices = [choice]
    response.usage = SimpleNamespace(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
    )
    return response


def _stream_part(delta: str | None, finish_reason: str | None = None, usage=None):
    choices = []
    if delta is not None or finish_reason is not None:
        choices = [
            SimpleNamespace(delta=SimpleNamespace(content=delta), finish_reason=finish_reason)
        ]
    return SimpleNamespace(id="chatcmpl-stream", choices=choices, usage=usage)


async def _aiter(items, fail_with: Exception | None = None):
    for item in items:
        yield item
    if fail_with is not None:
        raise fail_with


def _named_error(name: str, status: int | None = None, message: str = "boom") -> Exception:
    cls = type(name, (Exception,), {})
    error = cls(message)
    if status is not None:
        error.status_code = status
    return error


class TestClassifyError:
    """classify_error 映射规则"""

    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (TimeoutError(), ErrorKind.TIMEOUT),
            (httpx.ReadTimeout("slow"), ErrorKind.TIMEOUT),
            (_named_error("APITimeoutError"), ErrorKind.TIMEOUT),
            (_named_error("RateLimitError", 429), ErrorKind.RATE_LIMITED),
            (_named_error("BadRequestError", 400), ErrorKind.INVALID_REQUEST),
            (_named_error("UnprocessableEntityError", 422), ErrorKind.INVALID_REQUEST),
            (_named_error("ContentPolicyViolationError"), ErrorKind.INVALID_REQUEST),
            (_named_error("NotFoundError", 404), ErrorKind.MODEL_UNAVAILABLE),
            (_named_error("ServiceUnavailableError", 503), ErrorKind.MODEL_UNAVAILABLE),
            (_named_error("OverloadedError", 529), ErrorKind.MODEL_UNAVAILABLE),
            (ConnectionError("refused"), ErrorKind.MODEL_UNAVAILABLE),
            (_named_error("InternalServerError", 500), ErrorKind.PROVIDER_ERROR),
            (ValueError("weird"), ErrorKind.PROVIDER_ERROR),
        ],
    )
    def test_mapping(self, error, kind):
        result = classify_error(error, "openai")
        assert result.kind == kind
        assert result.details["provider"] == "openai"

    def test_content_policy_reason(self):
        result = classify_error(_named_error("ContentPolicyViolationError"), "openai")
        assert result.details["reason"] == "content_policy"

    def test_gateway_error_passthrough(self):
        error = GatewayError("already mapped", kind=ErrorKind.RATE_LIMITED)
        assert classify_error(error, "openai") is error


class TestChatGenerate:
    """文本生成"""

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_successful_call(self, mock_acompletion, make_request):
        mock_acompletion.return_value = _completion()
        adapter = OpenAIAdapter(_breaker(), api_key="sk-test")

        result = await adapter.generate(make_request(model="gpt-4o"))

        assert result.content == "Hi there"
        assert result.model == "gpt-4o"
        assert result.usage.prompt_tokens == 10
        assert result.usage.completion_tokens == 5
        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]
        assert kwargs["api_key"] == "sk-test"

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_error_is_classified(self, mock_acompletion, make_request):
        mock_acompletion.side_effect = _named_error("RateLimitError", 429)
        adapter = OpenAIAdapter(_breaker(), api_key="sk-test")

        with pytest.raises(GatewayError) as exc_info:
            await adapter.generate(make_request(model="gpt-4o"))
        assert exc_info.value.kind == ErrorKind.RATE_LIMITED
        assert exc_info.value.recoverable is True

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_failures_open_circuit(self, mock_acompletion, make_request):
        """连续失败后熔断，后续调用不再触达 provider"""
        mock_acompletion.side_effect = _named_error("InternalServerError", 500)
        breaker = _breaker(threshold=2)
        adapter = OpenAIAdapter(breaker, api_key="sk-test")

        for _ in range(2):
            with pytest.raises(GatewayError):
                await adapter.generate(make_request(model="gpt-4o"))
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await adapter.generate(make_request(model="gpt-4o"))
        assert mock_acompletion.call_count == 2

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_invalid_request_does_not_trip_circuit(self, mock_acompletion, make_request):
        mock_acompletion.side_effect = _named_error("BadRequestError", 400)
        breaker = _breaker(threshold=1)
        adapter = OpenAIAdapter(breaker, api_key="sk-test")

        with pytest.raises(GatewayError):
            await adapter.generate(make_request(model="gpt-4o"))
        assert breaker.state == CircuitState.CLOSED

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_timeout(self, mock_acompletion, make_request):
        """超过 timeout_s 归为 TIMEOUT"""

        async def slow(**kwargs):
            await asyncio.sleep(1)

        mock_acompletion.side_effect = slow
        adapter = OpenAIAdapter(_breaker(), api_key="sk-test", timeout_s=0.01)

        with pytest.raises(GatewayError) as exc_info:
            await adapter.generate(make_request(model="gpt-4o"))
        assert exc_info.value.kind == ErrorKind.TIMEOUT


class TestChatStream:
    """流式生成"""

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_chunks_and_usage(self, mock_acompletion, make_request):
        usage = SimpleNamespace(prompt_tokens=3, completion_tokens=2, total_tokens=5)
        mock_acompletion.return_value = _aiter(
            [
                _stream_part("Hel"),
                _stream_part("lo"),
                _stream_part(None, finish_reason="stop"),
                _stream_part(None, usage=usage),
            ]
        )
        adapter = OpenAIAdapter(_breaker(), api_key="sk-test")

        stream = adapter.generate_stream(make_request(model="gpt-4o"))
        chunks = [chunk async for chunk in stream]

        assert "".join(c.delta for c in chunks) == "Hello"
        assert chunks[-1].finish_reason == "stop"
        assert stream.usage.total_tokens == 5
        assert stream.finished is True
        assert mock_acompletion.call_args.kwargs["stream"] is True

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_mid_stream_failure_classified_and_counted(self, mock_acompletion, make_request):
        mock_acompletion.return_value = _aiter(
            [_stream_part("partial")],
            fail_with=_named_error("ServiceUnavailableError", 503),
        )
        breaker = _breaker(threshold=1)
        adapter = OpenAIAdapter(breaker, api_key="sk-test")

        received = []
        with pytest.raises(GatewayError) as exc_info:
            async for chunk in adapter.generate_stream(make_request(model="gpt-4o")):
                received.append(chunk.delta)

        assert received == ["partial"]
        assert exc_info.value.kind == ErrorKind.MODEL_UNAVAILABLE
        assert breaker.state == CircuitState.OPEN

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_consumer_close_not_counted(self, mock_acompletion, make_request):
        """调用方提前关闭流不计为失败"""
        mock_acompletion.return_value = _aiter([_stream_part("a"), _stream_part("b")])
        breaker = _breaker(threshold=1)
        adapter = OpenAIAdapter(breaker, api_key="sk-test")

        stream = adapter.generate_stream(make_request(model="gpt-4o"))
        first = await anext(stream)
        await stream.aclose()

        assert first.delta == "a"
        assert stream.usage is None
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats().total_failures == 0


class TestOpenAIMedia:
    """OpenAI 图片 / 语音"""

    @pytest.fixture
    def adapter(self) -> OpenAIAdapter:
        return OpenAIAdapter(_breaker(), api_key="sk-test")

    @patch("aigateway.provider.adapters.openai.aimage_generation", new_callable=AsyncMock)
    async def test_image_hd_suffix(self, mock_image, adapter):
        mock_image.return_value = SimpleNamespace(
            data=[SimpleNamespace(url="https://img/1.png", b64_json=None, revised_prompt="a cat")]
        )
        request = ImageRequest(tenant=Tenant(user_id="u1"), prompt="a cat")

        result = await adapter.generate_image(request, "dall-e-3-hd")

        assert result.model == "dall-e-3-hd"
        assert result.images[0].url == "https://img/1.png"
        assert mock_image.call_args.kwargs["model"] == "dall-e-3"
        assert mock_image.call_args.kwargs["quality"] == "hd"

    @patch("aigateway.provider.adapters.openai.aspeech", new_callable=AsyncMock)
    async def test_speech_base64(self, mock_speech, adapter):
        mock_speech.return_value = SimpleNamespace(content=b"ID3audio")
        request = SpeechRequest(tenant=Tenant(user_id="u1"), text="Hello there")

        result = await adapter.synthesize_speech(request, "tts-1")

        assert base64.b64decode(result.audio_base64) == b"ID3audio"
        assert result.character_count == len("Hello there")
        assert result.format == "mp3"

    @patch("aigateway.provider.adapters.openai.atranscription", new_callable=AsyncMock)
    async def test_transcription_duration(self, mock_stt, adapter):
        mock_stt.return_value = SimpleNamespace(text="hello world", language="en", duration=12.4)
        request = TranscriptionRequest(tenant=Tenant(user_id="u1"), audio=b"\x00" * 10)

        result = await adapter.transcribe(request, "whisper-1")

        assert result.text == "hello world"
        assert result.duration_seconds == pytest.approx(12.4)
        assert mock_stt.call_args.kwargs["file"] == ("audio.mp3", b"\x00" * 10)


class TestAnthropicAdapter:
    """Anthropic 适配"""

    def test_text_only(self):
        adapter = AnthropicAdapter(_breaker(), api_key="sk-ant-test")
        assert adapter.supports(Capability.TEXT_GENERATION)
        assert not adapter.supports(Capability.IMAGE_GENERATION)

    def test_alias_and_prefix(self):
        adapter = AnthropicAdapter(_breaker(), api_key="sk-ant-test")
        assert adapter.resolve_alias("claude-3.5-sonnet") == "claude-3-5-sonnet-20241022"
        assert adapter.litellm_model("claude-4-opus") == "anthropic/claude-opus-4-20250514"

    async def test_unsupported_capability(self):
        adapter = AnthropicAdapter(_breaker(), api_key="sk-ant-test")
        request = ImageRequest(tenant=Tenant(user_id="u1"), prompt="a cat")

        with pytest.raises(GatewayError) as exc_info:
            await adapter.generate_image(request, "claude-sonnet-4-20250514")
        assert exc_info.value.kind == ErrorKind.MODEL_UNAVAILABLE

    @patch("aigateway.provider.adapters.chat.acompletion")
    async def test_generate_uses_prefixed_model(self, mock_acompletion, make_request):
        mock_acompletion.return_value = _completion("Bonjour")
        adapter = AnthropicAdapter(_breaker(), api_key="sk-ant-test")

        result = await adapter.generate(make_request(model="claude-3-5-sonnet-20241022"))

        assert result.content == "Bonjour"
        assert mock_acompletion.call_args.kwargs["model"] == (
            "anthropic/claude-3-5-sonnet-20241022"
        )
