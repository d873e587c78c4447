"""日志与 APM 初始化

AIGW_LOG_FORMAT=json 输出结构化 JSON，其余值使用 ConsoleRenderer。
第三方库（litellm、httpx）的日志统一经 ProcessorFormatter 渲染，级别由
AIGW_THIRD_PARTY_LOG_LEVEL 控制，避免上游 SDK 的 debug 日志淹没请求日志。
Logfire 由 LOGFIRE_SEND_TO_LOGFIRE 控制，未开启或初始化失败时只保留本地日志。
"""

import logging
import os

import structlog
from fastapi import FastAPI

_THIRD_PARTY_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy", "httpx", "httpcore")


def _level(name: str, default: str) -> int:
    return getattr(logging, os.environ.get(name, default).upper(), logging.INFO)


def setup_logging() -> None:
    """配置 structlog 与标准库 logging，应用启动时调用一次"""
    json_output = os.environ.get("AIGW_LOG_FORMAT", "dev") == "json"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        shared_processors.append(structlog.processors.format_exc_info)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(_level("AIGW_LOG_LEVEL", "INFO"))

    third_party_level = _level("AIGW_THIRD_PARTY_LOG_LEVEL", "WARNING")
    for name in _THIRD_PARTY_LOGGERS:
        third_party = logging.getLogger(name)
        third_party.handlers.clear()
        third_party.propagate = True
        third_party.setLevel(third_party_level)


def setup_logfire(app: FastAPI) -> bool:
    """按需启用 Logfire（需要 LOGFIRE_TOKEN）

    Returns:
        是否已启用
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return False

    try:
        import logfire

        logfire.configure(service_name="aigateway")
        logfire.instrument_fastapi(app)
        logfire.instrument_httpx()
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
    return True
