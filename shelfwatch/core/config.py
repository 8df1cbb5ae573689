from pathlib import Path
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Locate the nearest .env starting from this file's directory
def find_env_file() -> Path | None:
    current = Path(__file__).resolve()
    for parent in current.parents:
        env_file = parent / ".env"
        if env_file.exists():
            return env_file
    return None


ENV_FILE = find_env_file()
BASE_DIR = ENV_FILE.parent if ENV_FILE else Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    APP_NAME: str = "Shelfwatch Inventory Notifications"
    LOG_LEVEL: str = "INFO"

    # 数据库：sqlite（默认，aiosqlite 驱动）/ mysql（aiomysql 驱动）
    DB_TYPE: str = "sqlite"
    DATABASE_URL: str = "sqlite+aiosqlite:///./shelfwatch.db"

    # Redis 仅用于跨进程的运行锁，未启用时退化为进程内锁
    REDIS_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"

    # 内置调度器
    # CRON_SCHEDULE：5 段 crontab 表达式，默认每天 09:00
    # CRON_TIMEZONE：解释 CRON_SCHEDULE 使用的时区
    CRON_ENABLED: bool = True
    CRON_SCHEDULE: str = "0 9 * * *"
    CRON_TIMEZONE: str = "Asia/Shanghai"

    # 外部触发接口的共享密钥，未配置时拒绝所有触发请求
    CRON_SECRET: str | None = None

    # Webhook 发送
    WEBHOOK_TIMEOUT_MS: int = 10000
    WEBHOOK_CONCURRENCY: int = 8
    RUN_TIMEOUT_SECONDS: float = 300

    # 去重窗口（滚动窗口，小时）
    NOTIFY_COOLDOWN_HOURS: float = 24
    # True: 发送失败的记录不参与去重，下次运行会重试
    NOTIFY_RETRY_FAILED: bool = True
    NOTIFY_LOG_RETENTION_DAYS: int = 90

    # 认证（JWT，subject 即用户 ID）
    AUTH_ENABLED: bool = True
    JWT_SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else ".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("DB_TYPE", mode="before")
    @classmethod
    def _normalize_db_type(cls, value: str | None) -> str:
        return (value or "sqlite").strip().lower()

    @field_validator("CRON_SCHEDULE", mode="before")
    @classmethod
    def _strip_cron(cls, value: str) -> str:
        return " ".join(str(value).split())

    @property
    def webhook_timeout_seconds(self) -> float:
        return self.WEBHOOK_TIMEOUT_MS / 1000


settings = Settings()
