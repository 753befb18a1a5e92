"""
Hazel Configuration Management
遵循约束：环境变量前缀 HZ__
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """全局配置类"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HZ__",
        case_sensitive=False
    )

    # Database
    db_url: Optional[str] = Field(default=None)  # 完整连接串，优先于下面的分项配置
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="hazel")
    db_user: str = Field(default="hazel")
    db_password: str = Field(default="")
    db_pool_size: int = Field(default=20)
    db_max_overflow: int = Field(default=40)
    db_echo: bool = Field(default=False)

    # Redis（领域事件）
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_db: int = Field(default=0)
    redis_password: Optional[str] = Field(default=None)
    event_bus_enabled: bool = Field(default=True)

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_prefix: str = Field(default="/api/hz/v1")
    api_title: str = Field(default="Hazel Fulfillment API")
    api_version: str = Field(default="1.0.0")
    api_debug: bool = Field(default=False)

    # Monitoring
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text
    slow_query_threshold_ms: int = Field(default=100)

    # 订单
    order_number_prefix: str = Field(default="ORD")
    order_number_max_attempts: int = Field(default=10)
    # 开启后，存在未消耗预留的订单不允许直接履约
    strict_fulfillment: bool = Field(default=False)

    # 库存
    default_item_type: str = Field(default="FINISHED_GOOD")
    stock_movements_limit: int = Field(default=1000)

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v):
        """确保 API 前缀符合规范"""
        if not v.startswith("/api/hz/"):
            raise ValueError("API prefix must start with /api/hz/")
        return v

    @field_validator("default_item_type")
    @classmethod
    def validate_default_item_type(cls, v):
        if v not in ("RAW_MATERIAL", "WIP", "FINISHED_GOOD"):
            raise ValueError(f"Unknown item type: {v}")
        return v

    @field_validator("order_number_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError("order_number_max_attempts must be at least 1")
        return v

    @property
    def database_url(self) -> str:
        """构建数据库连接字符串"""
        if self.db_url:
            return self.db_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def sync_database_url(self) -> str:
        """构建同步数据库连接字符串（用于 Alembic）"""
        if self.db_url:
            return self.db_url.replace("+asyncpg", "").replace("+aiosqlite", "")
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def redis_url(self) -> str:
        """构建 Redis 连接字符串"""
        password = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{password}{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
