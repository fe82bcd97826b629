"""业务异常定义及 HTTP 状态码映射."""

import logging
from typing import TypeVar

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NeuReedError(Exception):
    """所有业务异常的基类."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(NeuReedError):
    """资源不存在（Feed、用户、文章、分类等）."""


class ValidationError(NeuReedError):
    """参数或设置值超出允许范围."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class ConflictError(NeuReedError):
    """与现有状态冲突，例如重复订阅或移除最后一个管理员."""


class UpstreamError(NeuReedError):
    """外部依赖失败：订阅源抓取、Embedding 或 LLM 服务."""


class ConfigurationError(NeuReedError):
    """功能在系统层面未启用或未配置."""


class AuthenticationError(NeuReedError):
    """请求未携带用户身份."""


class PermissionDeniedError(NeuReedError):
    """当前用户无权执行该操作."""


# 异常类型 -> HTTP 状态码（唯一映射表）
ERROR_STATUS_CODES: dict[type[NeuReedError], int] = {
    AuthenticationError: 401,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    ValidationError: 422,
    UpstreamError: 502,
    ConfigurationError: 503,
}


def status_code_for(exc: NeuReedError) -> int:
    """按继承链查找异常对应的状态码，未登记的返回 500."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]  # type: ignore[index]
    return 500


def require_resource(resource: T | None, detail: str = "资源不存在") -> T:
    """资源为 None 时抛出 NotFoundError，否则原样返回."""
    if resource is None:
        raise NotFoundError(detail)
    return resource


async def neureed_error_handler(request: Request, exc: NeuReedError) -> JSONResponse:
    """将业务异常转换为 JSON 错误响应."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} 失败: {exc.message}")

    content: dict = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=status_code, content=content)


def register_error_handlers(app: FastAPI) -> None:
    """注册业务异常处理器."""
    app.add_exception_handler(NeuReedError, neureed_error_handler)  # type: ignore[arg-type]
