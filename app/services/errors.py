"""业务异常定义，由 FastAPI 异常处理器统一转换为 JSON 响应。"""

from __future__ import annotations


class AppError(Exception):
    """可直接展示给用户的业务异常。"""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """输入缺失或格式错误。"""

    status_code = 400


class AuthenticationError(AppError):
    """令牌缺失、无效或凭据错误。"""

    status_code = 401


class PermissionDeniedError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """并发写入冲突。"""

    status_code = 409
