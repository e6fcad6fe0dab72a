"""Runtime settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MODGATE_", extra="ignore")

    app_name: str = "ModGate"
    env: str = "dev"
    log_level: str = "info"
    host: str = "127.0.0.1"
    port: int = 18090
    api_prefix: str = "/api/content-moderation"

    # 单个模型调用的超时；超时的模型不参与聚合
    adapter_timeout_seconds: float = Field(default=5.0, gt=0.0)
    batch_concurrency: int = Field(default=4, ge=1)
    max_batch_items: int = Field(default=100, ge=1)
    max_content_length: int = 50_000

    history_size: int = Field(default=50, ge=1)
    cache_max_entries: int = Field(default=1000, ge=1)
    archive_max_sessions: int = Field(default=500, ge=1)

    default_sensitivity: str = "medium"
    moderation_rules_path: str = "modgate/policies/rules/moderation_rules.yaml"
    audit_log_path: str = "logs/moderation_actions.jsonl"  # 空串表示不写审计文件

    remote_max_connections: int = 100
    remote_max_keepalive_connections: int = 20
    remote_circuit_failure_threshold: int = 3
    remote_circuit_open_seconds: int = 30


settings = Settings()
