"""SmartRouter -- 按查询复杂度把请求降级到更便宜的模型

纯函数：只依赖请求内容与静态 ModelCatalog，不做任何 I/O，
相同输入总是得到相同的 RoutingDecision（缓存 key 以路由后的模型为作用域）。

打分规则（作用于最后一条 user 消息）:
    含图片                -> 直接判定 complex
    寒暄 / 致谢            -2
    长度 < 30              -1
    长度 > 500 / > 200     +2 / +1
    user 轮次 > 5          +1
    代码特征               +2
    技术词汇               +2
    内容生成类请求          +1
    多个问号               +1
    score <= -1 -> simple, score >= 2 -> complex, 其余 moderate
"""

import re
from collections.abc import Sequence
from enum import StrEnum

import structlog
from pydantic import BaseModel, ConfigDict, Field

from .catalog import ModelCatalog, ModelInfo
from .models import ConversationMessage, MessageRole

log = structlog.get_logger()

GREETING_PATTERN = re.compile(
    r"^(hi|hello|hey|salom|привет|здравствуй|assalomu|good\s*(morning|afternoon|evening)"
    r"|thanks|thank you|bye|goodbye|see you|rahmat|спасибо|пока|yes|no|ok|okay|sure"
    r"|yep|nope|ha|yo'q|да|нет)[\s!?.]*$",
    re.IGNORECASE,
)
CODE_PATTERN = re.compile(
    r"```[\s\S]*```|\b(function|class|const |let |var |def |import |export |async |await |return )\b"
)
TECHNICAL_PATTERN = re.compile(
    r"\b(implement|debug|analyze|compare|explain how|architecture|algorithm|refactor"
    r"|optimize|investigate|comprehensive|detailed|step.?by.?step)\b",
    re.IGNORECASE,
)
CONTENT_PATTERN = re.compile(
    r"\b(write|create|generate)\s+(an?\s+)?(article|essay|report|document|paper|code|function|script)\b",
    re.IGNORECASE,
)


class Complexity(StrEnum):
    """查询复杂度"""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class RoutingDecision(BaseModel):
    """路由决策 -- 每个请求计算一次，之后只读"""

    model_config = ConfigDict(frozen=True)

    model: str = Field(description="实际使用的模型")
    original_model: str = Field(description="调用方请求的模型")
    complexity: Complexity
    was_routed: bool
    reason: str
    estimated_savings: int | None = Field(default=None, description="预计节省百分比")


def _last_user_message(messages: Sequence[ConversationMessage]) -> ConversationMessage | None:
    for msg in reversed(messages):
        if msg.role == MessageRole.USER:
            return msg
    return None


def classify_complexity(messages: Sequence[ConversationMessage]) -> Complexity:
    """按打分规则判定复杂度"""
    last = _last_user_message(messages)
    if last is None:
        return Complexity.MODERATE
    if last.has_images:
        return Complexity.COMPLEX

    content = last.text
    score = 0

    if GREETING_PATTERN.match(content.strip()):
        score -= 2
    if len(content) < 30:
        score -= 1
    if len(content) > 500:
        score += 2
    elif len(content) > 200:
        score += 1

    user_turns = sum(1 for m in messages if m.role == MessageRole.USER)
    if user_turns > 5:
        score += 1

    if CODE_PATTERN.search(content):
        score += 2
    if TECHNICAL_PATTERN.search(content):
        score += 2
    if CONTENT_PATTERN.search(content):
        score += 1
    if content.count("?") > 1:
        score += 1

    if score <= -1:
        return Complexity.SIMPLE
    if score >= 2:
        return Complexity.COMPLEX
    return Complexity.MODERATE


def _savings_percent(requested: ModelInfo, routed: ModelInfo) -> int | None:
    requested_cost = requested.pricing.per_token_total
    routed_cost = routed.pricing.per_token_total
    if requested_cost <= 0:
        return None
    return round((requested_cost - routed_cost) / requested_cost * 100)


class SmartRouter:
    """智能路由器"""

    def __init__(self, catalog: ModelCatalog) -> None:
        self._catalog = catalog

    def route(
        self,
        requested_model: str,
        messages: Sequence[ConversationMessage],
        enabled: bool,
        max_tokens: int | None = None,
    ) -> RoutingDecision:
        """计算路由决策

        Args:
            requested_model: 调用方请求的模型
            messages: 待发送的完整对话
            enabled: 调用方是否开启智能路由
            max_tokens: 请求的输出上限；输出上限更低的模型不作为候选

        Returns:
            RoutingDecision；was_routed=False 时 model 与 requested_model 相同
        """
        complexity = classify_complexity(messages)

        def keep(reason: str) -> RoutingDecision:
            return RoutingDecision(
                model=requested_model,
                original_model=requested_model,
                complexity=complexity,
                was_routed=False,
                reason=reason,
            )

        if not enabled:
            return keep("Smart routing disabled")

        requested = self._catalog.get(requested_model)
        if requested is None:
            return keep("Unknown model - routing skipped")

        min_tier = self._catalog.min_tier(requested.provider, requested.capability)
        if min_tier is not None and requested.tier <= min_tier:
            return keep("Requested model is already the cheapest tier")

        if complexity == Complexity.COMPLEX:
            return keep("Complex query - using requested model")
        top_tier = self._catalog.top_tier(requested.provider, requested.capability)
        if complexity == Complexity.MODERATE and requested.tier < top_tier:
            return keep("Requested model is already optimal for this complexity")

        vision = any(m.has_images for m in messages)
        target = self._catalog.cheapest(
            requested.provider,
            requested.capability,
            vision=vision,
            min_output_tokens=max_tokens,
        )
        if target is None or target.id == requested.id or (
            target.pricing.per_token_total >= requested.pricing.per_token_total
        ):
            return keep("Requested model is already optimal for this complexity")

        decision = RoutingDecision(
            model=target.id,
            original_model=requested_model,
            complexity=complexity,
            was_routed=True,
            reason=f"Query classified as {complexity.value} - using cheaper model",
            estimated_savings=_savings_percent(requested, target),
        )
        log.info(
            "smart_routed",
            requested_model=requested_model,
            routed_model=target.id,
            complexity=complexity.value,
            estimated_savings=decision.estimated_savings,
        )
        return decision

    def estimate_savings(
        self,
        requested_model: str,
        messages: Sequence[ConversationMessage],
        max_tokens: int | None = None,
    ) -> int:
        """开启智能路由后预计节省的百分比（不实际路由）"""
        decision = self.route(requested_model, messages, enabled=True, max_tokens=max_tokens)
        return decision.estimated_savings or 0
