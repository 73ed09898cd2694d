# relay/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal
from urllib.parse import quote


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    run_mode: Literal["all", "web", "consumer"] = "all"
    log_level: str = "INFO"

    # Redis (queue store)
    redis_url: str | None = None  # e.g. redis://:secret@redis:6379/0, overrides redis_addr/password/db
    redis_addr: str = "localhost:6379"
    redis_password: str = ""
    redis_db: int = 0
    redis_connect_timeout: float = 5.0
    redis_max_connections: int = 20

    # Queues
    source_list: str = "service:commands"  # Directives are BLPOP'ed from here
    target_queue: str = "poppit:notifications"  # Default destination for work orders

    # Project registry
    config_file: str = "projects.json"

    # HTTP ingress
    http_host: str = "0.0.0.0"
    port: int = 8080
    http_timeout_keep_alive: int = 10

    # Queue consumer
    consumer_block_timeout: float = 5.0  # BLPOP bound; also the worst-case shutdown latency
    consumer_error_backoff: float = 1.0  # Pause after a failed read before retrying

    # Shutdown
    shutdown_grace_seconds: float = 10.0

    # Feature Flags
    enable_request_logging: bool = True
    enable_metrics: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def runs_http(self) -> bool:
        return self.run_mode in ("all", "web")

    @property
    def runs_consumer(self) -> bool:
        return self.run_mode in ("all", "consumer")

    @property
    def redis_dsn(self) -> str:
        if self.redis_url:
            return self.redis_url

        auth = f":{quote(self.redis_password, safe='')}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_addr}/{self.redis_db}"

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        problems = []
        if self.log_level.upper() == "DEBUG":
            problems.append("log_level=DEBUG")
        if not self.source_list.strip():
            problems.append("source_list")
        if not self.target_queue.strip():
            problems.append("target_queue")
        return problems


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and not s.redis_password and not s.redis_url:
        warnings.append("prod: redis_password is empty (queue store is unauthenticated).")

    if s.source_list == s.target_queue:
        warnings.append(
            f"source_list and target_queue are both '{s.source_list}': "
            "work orders would be consumed as directives."
        )

    if s.shutdown_grace_seconds < s.consumer_block_timeout:
        warnings.append(
            "shutdown_grace_seconds is shorter than consumer_block_timeout: "
            "the consumer may be cancelled mid-read on shutdown."
        )

    if s.consumer_error_backoff <= 0:
        warnings.append("consumer_error_backoff <= 0: an unreachable store will cause a hot retry loop.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Invalid settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
