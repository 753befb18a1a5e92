"""
Hazel 错误处理系统
遵循 RFC7807 Problem Details 标准
"""
from typing import Any, Dict, Iterable, Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


class ProblemDetail(BaseModel):
    """RFC7807 Problem Details 模型"""
    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "about:blank",
                "title": "Invalid Status Transition",
                "status": 409,
                "detail": "Cannot transition order from CANCELLED to CONFIRMED. Allowed: []",
                "code": "INVALID_STATUS_TRANSITION",
                "current_status": "CANCELLED",
                "allowed": []
            }
        }
    )

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: Optional[str] = None
    instance: Optional[str] = None
    code: Optional[str] = None  # 业务错误码


class HazelException(Exception):
    """Hazel 基础异常类"""

    def __init__(
        self,
        status: int,
        code: str,
        title: str,
        detail: Optional[str] = None,
        **kwargs
    ):
        self.status = status
        self.code = code
        self.title = title
        self.detail = detail
        self.extra = kwargs
        super().__init__(detail or title)

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        """转换为 Problem Details 格式"""
        return ProblemDetail(
            type="about:blank",
            title=self.title,
            status=self.status,
            detail=self.detail,
            instance=instance,
            code=self.code,
            **self.extra
        )

    def to_response(self, request: Optional[Request] = None) -> JSONResponse:
        """转换为 JSON 响应"""
        instance = str(request.url) if request else None
        problem = self.to_problem_detail(instance)

        return JSONResponse(
            status_code=self.status,
            content={
                "ok": False,
                "error": problem.model_dump(mode="json", exclude_none=True)
            }
        )


# 预定义错误类
class NotFoundError(HazelException):
    """404 未找到"""
    def __init__(self, code: str, resource: str, **kwargs):
        super().__init__(
            status=404,
            code=code,
            title="Not Found",
            detail=f"{resource} not found",
            **kwargs
        )


class InvalidStatusTransitionError(HazelException):
    """409 非法的订单状态流转"""
    def __init__(self, current_status: str, target_status: str, allowed: Iterable[str]):
        allowed_list = sorted(allowed)
        super().__init__(
            status=409,
            code="INVALID_STATUS_TRANSITION",
            title="Invalid Status Transition",
            detail=(
                f"Cannot transition order from {current_status} to {target_status}. "
                f"Allowed: [{', '.join(allowed_list)}]"
            ),
            current_status=current_status,
            target_status=target_status,
            allowed=allowed_list
        )


class InsufficientStockError(HazelException):
    """409 库存位现存量不足"""
    def __init__(self, stock_location_id: int, available: int, requested: int):
        super().__init__(
            status=409,
            code="INSUFFICIENT_STOCK",
            title="Insufficient Stock",
            detail=f"Insufficient inventory. Available: {available}, Requested: {requested}",
            stock_location_id=stock_location_id,
            available=available,
            requested=requested
        )


class InsufficientInventoryError(HazelException):
    """409 订单无法分配任何库存"""
    def __init__(self, detail: str, **kwargs):
        super().__init__(
            status=409,
            code="INSUFFICIENT_INVENTORY",
            title="Insufficient Inventory",
            detail=detail,
            **kwargs
        )


class InvalidStateError(HazelException):
    """409 预留或订单处于不允许该操作的状态"""
    def __init__(self, code: str, detail: str, **kwargs):
        super().__init__(
            status=409,
            code=code,
            title="Invalid State",
            detail=detail,
            **kwargs
        )


class ValidationError(HazelException):
    """422 验证失败"""
    def __init__(self, code: str, detail: str, **kwargs):
        super().__init__(
            status=422,
            code=code,
            title="Validation Failed",
            detail=detail,
            **kwargs
        )


class InternalServerError(HazelException):
    """500 内部错误"""
    def __init__(self, code: str = "INTERNAL_ERROR", detail: str = "An internal error occurred"):
        super().__init__(
            status=500,
            code=code,
            title="Internal Server Error",
            detail=detail
        )


class UniquenessExhaustedError(HazelException):
    """503 唯一键生成重试耗尽，可整体重试"""
    def __init__(self, code: str, detail: str, attempts: int):
        super().__init__(
            status=503,
            code=code,
            title="Service Unavailable",
            detail=detail,
            attempts=attempts
        )
