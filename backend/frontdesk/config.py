"""
应用配置
从环境变量读取配置
"""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "FrontDesk"
    DEBUG: bool = False

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./frontdesk.db"

    # 日志级别
    LOG_LEVEL: str = "INFO"

    # 未指定操作人时使用的默认值
    DEFAULT_ACTOR: str = "system"

    # 审计日志查询上限
    HISTORY_QUERY_LIMIT: int = 500

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# 全局设置实例
settings = Settings()
