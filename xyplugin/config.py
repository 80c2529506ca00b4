"""全局配置加载模块：从环境变量构建插件运行参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_bool(raw_value: object, default: bool = False) -> bool:
    """解析作业参数中的布尔值，兼容 1/0/true/false/yes/no。"""
    if raw_value is None:
        return default
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, (int, float)):
        return raw_value != 0
    lowered = str(raw_value).strip().lower()
    if lowered in {"1", "true", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "no", "n", "off", ""}:
        return False
    raise ValueError(f"Invalid boolean value: {raw_value}")


class Settings(BaseSettings):
    """插件运行配置对象，从 XYPLUGIN_ 前缀环境变量读取。"""
    model_config = SettingsConfigDict(
        env_prefix="XYPLUGIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "xyplugin"

    log_level: str = "WARNING"
    log_file: Path | None = None
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 3
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 2000
    log_time_format: str = "%Y-%m-%d %H:%M:%S"

    # Secret variable names, resolved against JobContext.secrets at call time.
    api_key_secret: str = "XYOPS_API_KEY"
    cache_bucket_secret: str = "XYOPS_CACHE_BUCKET"
    http_timeout_seconds: float | None = None

    get_bucket_path: str = "/api/app/get_bucket/v1"
    write_bucket_data_path: str = "/api/app/write_bucket_data/v1"
    upload_bucket_files_path: str = "/api/app/upload_bucket_files/v1"
    delete_bucket_file_path: str = "/api/app/delete_bucket_file/v1"
    get_tags_path: str = "/api/app/get_tags/v1"
    send_email_path: str = "/api/app/send_email/v1"

    legacy_interpreter: str = "python3"
    legacy_platforms: str = Field(default="linux,darwin,win32")
    extension_suffix: str = ".py"

    def legacy_platforms_list(self) -> list[str]:
        return _csv_to_list(self.legacy_platforms)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings。"""
    return Settings()
