"""
基础服务类
"""
from typing import Optional, Dict, Any, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.utils.logger import get_logger
from hz_core.utils.errors import HazelException, InternalServerError, ValidationError
from hz_core.database import DatabaseManager, get_db_manager
from hz_core.event_bus import EventBus, get_event_bus

logger = get_logger(__name__)


class BaseService:
    """基础服务类

    每个公开操作对应一个事务：内部组件只接收调用方的 session 并 flush，
    由 execute_with_transaction 统一提交或回滚。
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        event_bus: Optional[EventBus] = None
    ):
        self.db_manager = db_manager or get_db_manager()
        self.event_bus = event_bus or get_event_bus()
        self.logger = get_logger(self.__class__.__name__)

    async def execute_with_transaction(
        self,
        operation,
        *args,
        **kwargs
    ) -> Any:
        """在事务中执行操作"""
        try:
            async with self.db_manager.get_transaction() as session:
                return await operation(session, *args, **kwargs)
        except HazelException:
            raise
        except Exception as e:
            self.logger.error("Transaction operation failed", exc_info=True)
            raise InternalServerError(
                code="TRANSACTION_FAILED",
                detail=f"Database transaction failed: {str(e)}"
            ) from e

    async def execute_with_session(
        self,
        operation,
        *args,
        **kwargs
    ) -> Any:
        """使用数据库会话执行只读操作"""
        try:
            async with self.db_manager.get_session() as session:
                return await operation(session, *args, **kwargs)
        except HazelException:
            raise
        except Exception as e:
            self.logger.error("Session operation failed", exc_info=True)
            raise InternalServerError(
                code="SESSION_OPERATION_FAILED",
                detail=f"Database operation failed: {str(e)}"
            ) from e

    async def publish_event(self, topic: str, payload: Dict[str, Any]) -> None:
        """发布领域事件；事务已提交，发布失败不影响主流程"""
        try:
            await self.event_bus.publish(topic, payload)
            self.logger.debug(f"Published event: {topic}")
        except Exception:
            self.logger.error("Failed to publish event", topic=topic, exc_info=True)

    def validate_required_fields(self, data: Dict[str, Any], required_fields: List[str]) -> None:
        """验证必填字段"""
        missing_fields = [
            field for field in required_fields
            if field not in data or data[field] is None
        ]

        if missing_fields:
            raise ValidationError(
                code="MISSING_REQUIRED_FIELDS",
                detail=f"Missing required fields: {', '.join(missing_fields)}",
                fields=missing_fields
            )

    def validate_positive_int(self, value: Any, field: str) -> int:
        """验证正整数数量"""
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(
                code="INVALID_QUANTITY",
                detail=f"{field} must be a positive integer, got: {value!r}"
            )
        return value


class RepositoryMixin:
    """仓储混入类 - 提供常用的数据库操作"""

    async def get_by_id(
        self,
        session: AsyncSession,
        model_class,
        record_id: int
    ) -> Optional[Any]:
        """根据ID获取记录"""
        return await session.get(model_class, record_id)

    async def get_many_by_field(
        self,
        session: AsyncSession,
        model_class,
        field_name: str,
        field_value: Any,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[Any]:
        """根据字段获取多个记录"""
        stmt = select(model_class).where(getattr(model_class, field_name) == field_value)
        stmt = stmt.order_by(model_class.id)

        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        session: AsyncSession,
        model_class,
        data: Dict[str, Any]
    ) -> Any:
        """创建记录"""
        instance = model_class(**data)
        session.add(instance)
        await session.flush()  # 获取生成的ID
        return instance

    async def exists(
        self,
        session: AsyncSession,
        model_class,
        **filters
    ) -> bool:
        """检查记录是否存在"""
        stmt = select(model_class.id)
        for field, value in filters.items():
            stmt = stmt.where(getattr(model_class, field) == value)

        stmt = stmt.limit(1)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
