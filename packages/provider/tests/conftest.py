"""Provider 包测试 fixtures"""

from collections.abc import Callable

import pytest
from aigateway.provider import ConversationMessage, GenerationRequest, MessageRole, Tenant


class FakeClock:
    """可手动推进的单调时钟（秒）"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(user_id="user-1")


@pytest.fixture
def make_request(tenant: Tenant) -> Callable[..., GenerationRequest]:
    """构造单条 user 消息的文本请求"""

    def _make(model: str = "echo-pro", content: str = "Hello", **kwargs) -> GenerationRequest:
        return GenerationRequest(
            tenant=tenant,
            model=model,
            messages=(ConversationMessage(role=MessageRole.USER, content=content),),
            **kwargs,
        )

    return _make


@pytest.fixture
def multi_turn_messages() -> tuple[ConversationMessage, ...]:
    """多轮对话测试数据"""
    return (
        ConversationMessage(role=MessageRole.SYSTEM, content="You are a helpful assistant."),
        ConversationMessage(role=MessageRole.USER, content="What is Python?"),
        ConversationMessage(role=MessageRole.ASSISTANT, content="Python is a programming language."),
        ConversationMessage(role=MessageRole.USER, content="Tell me more."),
    )
