# =============================================================================
# 模块: settings.py
# 功能: PaperPulse 的全局应用配置模块
# 架构角色: 作为整个应用的配置中枢，提供统一的配置管理。
#   采用分层配置优先级机制，从高到低依次为：
#   1. 环境变量（运行时覆盖，适用于容器化部署）
#   2. .env 文件（存放敏感信息如密码、API密钥）
#   3. config/defaults.yaml（非敏感默认值）
#   4. Python 代码中的硬编码默认值（兜底方案）
#
# 设计决策:
#   - 使用 pydantic-settings 的 BaseSettings 实现类型安全的配置
#   - YAML 文件在模块加载时一次性读取并缓存到模块级变量中
#   - validation_alias 用于将大写的环境变量名映射到小写的 Python 属性名
#   - 敏感信息（数据库密码、LLM API 密钥、Unpaywall 邮箱）不在 YAML 中设默认值
# =============================================================================
"""Global application settings for PaperPulse.

Configuration precedence (highest to lowest):
1. Environment variables (runtime override)
2. .env file (secrets)
3. config/defaults.yaml (non-sensitive defaults)
4. Hardcoded Python defaults (fallback)
"""

from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.config_loader import get_config

# 项目根目录（settings.py 所在目录）
BASE_DIR = Path(__file__).resolve().parent

# 模块加载时一次性读取 YAML 配置并缓存
_yaml_config = get_config()
_app_config = _yaml_config.get("app", {})                # 应用基本配置
_db_config = _yaml_config.get("database", {})             # 数据库配置
_fetch_config = _yaml_config.get("fetch", {})             # RSS 抓取配置
_fulltext_config = _yaml_config.get("fulltext", {})       # 全文获取配置
_ai_config = _yaml_config.get("ai", {})                   # LLM 摘要配置
_openai_config = _ai_config.get("openai", {})
_claude_config = _ai_config.get("claude", {})
_scheduler_config = _yaml_config.get("scheduler", {})     # 定时任务调度配置


def _get_default_data_dir() -> Path:
    """Resolve the data directory relative to the project root."""
    path = Path(_app_config.get("data_dir", "./data"))
    if not path.is_absolute():
        return BASE_DIR / path
    return path


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Global application settings."""

    # ======================== 应用基本配置 ========================
    app_name: str = Field(
        default=_app_config.get("name", "PaperPulse"),
        validation_alias="APP_NAME",
    )
    debug: bool = Field(
        default=_app_config.get("debug", False),
        validation_alias="DEBUG",
    )
    data_dir: Path = Field(
        default=_get_default_data_dir(),
        validation_alias="DATA_DIR",
    )

    # ======================== 数据库配置 ========================
    # DATABASE_URL 非空时直接使用（如 sqlite+aiosqlite:///./data/paperpulse.db），
    # 否则根据 DB_* 拼接 MySQL（aiomysql 驱动）连接串
    database_url_override: str = Field(
        default="",
        validation_alias="DATABASE_URL",
    )
    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=3306, validation_alias="DB_PORT")
    db_name: str = Field(default="paper_pulse", validation_alias="DB_NAME")
    db_user: str = Field(default="paper_pulse", validation_alias="DB_USER")
    db_password: str = Field(default="", validation_alias="DB_PASSWORD")
    db_pool_size: int = Field(
        default=_db_config.get("pool_size", 10),
        validation_alias="DB_POOL_SIZE",
    )
    db_max_overflow: int = Field(
        default=_db_config.get("max_overflow", 20),
        validation_alias="DB_MAX_OVERFLOW",
    )
    db_pool_recycle: int = Field(
        default=_db_config.get("pool_recycle", 3600),
        validation_alias="DB_POOL_RECYCLE",
    )
    db_echo: bool = Field(
        default=_db_config.get("echo", False),
        validation_alias="DB_ECHO",
    )

    # ======================== RSS 抓取配置 ========================
    fetch_schedule: str = Field(
        default=_fetch_config.get("schedule", "0 6 * * *"),
        validation_alias="FETCH_SCHEDULE",
    )
    fetch_enabled: bool = Field(
        default=_fetch_config.get("enabled", True),
        validation_alias="FETCH_ENABLED",
    )
    # 两个论文誌之间的最小间隔（毫秒），对上游 Feed 提供方的限速约定
    fetch_min_interval_ms: int = Field(
        default=_fetch_config.get("min_interval_ms", 5000),
        validation_alias="FETCH_MIN_INTERVAL_MS",
    )
    fetch_timeout: float = Field(
        default=_fetch_config.get("timeout", 30),
        validation_alias="FETCH_TIMEOUT",
    )
    # Feed 下载的传输层重试次数，0 表示不重试
    fetch_http_retries: int = Field(
        default=_fetch_config.get("http_retries", 0),
        validation_alias="FETCH_HTTP_RETRIES",
    )
    paper_dedup_on_external_id: bool = Field(
        default=_fetch_config.get("dedup_on_external_id", False),
        validation_alias="PAPER_DEDUP_ON_EXTERNAL_ID",
    )
    # 格式: NAME|RSS_URL,NAME2|RSS_URL2
    default_journals: str = Field(
        default="",
        validation_alias="DEFAULT_JOURNALS",
    )

    # ======================== 全文获取配置 ========================
    fulltext_enabled: bool = Field(
        default=_fulltext_config.get("enabled", True),
        validation_alias="FULLTEXT_ENABLED",
    )
    unpaywall_email: str = Field(
        default="",
        validation_alias="UNPAYWALL_EMAIL",
    )
    fulltext_timeout: float = Field(
        default=_fulltext_config.get("timeout", 30),
        validation_alias="FULLTEXT_TIMEOUT",
    )
    fulltext_max_bytes: int = Field(
        default=_fulltext_config.get("max_bytes", 50 * 1024 * 1024),
        validation_alias="FULLTEXT_MAX_BYTES",
    )
    fulltext_max_text_length: int = Field(
        default=_fulltext_config.get("max_text_length", 100000),
        validation_alias="FULLTEXT_MAX_TEXT_LENGTH",
    )
    fulltext_max_pdf_pages: int = Field(
        default=_fulltext_config.get("max_pdf_pages", 200),
        validation_alias="FULLTEXT_MAX_PDF_PAGES",
    )
    fulltext_min_text_length: int = Field(
        default=_fulltext_config.get("min_text_length", 500),
        validation_alias="FULLTEXT_MIN_TEXT_LENGTH",
    )
    fulltext_request_interval: float = Field(
        default=_fulltext_config.get("request_interval", 0.5),
        validation_alias="FULLTEXT_REQUEST_INTERVAL",
    )

    # ======================== LLM 摘要配置 ========================
    ai_default_provider: str = Field(
        default=_ai_config.get("default_provider", "openai"),
        validation_alias="AI_DEFAULT_PROVIDER",
    )
    ai_timeout: float = Field(
        default=_ai_config.get("timeout", 120),
        validation_alias="AI_TIMEOUT",
    )
    ai_aggregate_timeout: float = Field(
        default=_ai_config.get("aggregate_timeout", 180),
        validation_alias="AI_AGGREGATE_TIMEOUT",
    )
    ai_max_tokens: int = Field(
        default=_ai_config.get("max_tokens", 2000),
        validation_alias="AI_MAX_TOKENS",
    )
    ai_aggregate_max_tokens: int = Field(
        default=_ai_config.get("aggregate_max_tokens", 4000),
        validation_alias="AI_AGGREGATE_MAX_TOKENS",
    )
    ai_max_content_length: int = Field(
        default=_ai_config.get("max_content_length", 30000),
        validation_alias="AI_MAX_CONTENT_LENGTH",
    )
    ai_aggregate_max_papers: int = Field(
        default=_ai_config.get("aggregate_max_papers", 50),
        validation_alias="AI_AGGREGATE_MAX_PAPERS",
    )
    ai_summary_language: str = Field(
        default=_ai_config.get("summary_language", "English"),
        validation_alias="AI_SUMMARY_LANGUAGE",
    )

    openai_api_key: str = Field(default="", validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default=_openai_config.get("base_url", "https://api.openai.com/v1"),
        validation_alias="OPENAI_BASE_URL",
    )
    openai_default_model: str = Field(
        default=_openai_config.get("default_model", "gpt-4o"),
        validation_alias="OPENAI_DEFAULT_MODEL",
    )
    openai_available_models: str = Field(
        default=_openai_config.get("available_models", "gpt-4o,gpt-4o-mini"),
        validation_alias="OPENAI_AVAILABLE_MODELS",
    )

    claude_api_key: str = Field(default="", validation_alias="CLAUDE_API_KEY")
    claude_base_url: str = Field(
        default=_claude_config.get("base_url", "https://api.anthropic.com/v1"),
        validation_alias="CLAUDE_BASE_URL",
    )
    claude_default_model: str = Field(
        default=_claude_config.get("default_model", "claude-sonnet-4-20250514"),
        validation_alias="CLAUDE_DEFAULT_MODEL",
    )
    claude_available_models: str = Field(
        default=_claude_config.get("available_models", "claude-sonnet-4-20250514"),
        validation_alias="CLAUDE_AVAILABLE_MODELS",
    )

    # ======================== 定时任务调度配置 ========================
    scheduler_timezone: str = Field(
        default=_scheduler_config.get("timezone", "UTC"),
        validation_alias="SCHEDULER_TIMEZONE",
    )

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("ai_default_provider", mode="before")
    @classmethod
    def normalize_provider_id(cls, v: str) -> str:
        """Provider ids are matched case-insensitively against the registry."""
        return (v or "openai").strip().lower()

    @property
    def database_url(self) -> str:
        """Build the async database URL.

        优先使用 DATABASE_URL；否则构建 mysql+aiomysql 连接串，密码经过 URL 编码。
        """
        if self.database_url_override:
            return self.database_url_override
        from urllib.parse import quote_plus
        encoded_password = quote_plus(self.db_password)
        return (
            f"mysql+aiomysql://{self.db_user}:{encoded_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def pdf_dir(self) -> Path:
        """Directory for content-addressed PDF files."""
        return self.data_dir / "pdfs"

    @property
    def openai_models_list(self) -> List[str]:
        return _split_csv(self.openai_available_models)

    @property
    def claude_models_list(self) -> List[str]:
        return _split_csv(self.claude_available_models)


# 创建全局配置单例
# 整个应用通过 from settings import settings 引用此实例
settings = Settings()
