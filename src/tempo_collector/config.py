"""
Runtime configuration, read from the environment (and a .env file if present).
"""

import os
from typing import Optional

import dotenv
from pydantic import BaseModel, Field

from .rpc import DEFAULT_RPC_URL


class Settings(BaseModel):
    rpc_urls: list[str] = Field(default_factory=lambda: [DEFAULT_RPC_URL])
    database_url: str = "sqlite+aiosqlite:///data/tempo.db"
    rpc_max_concurrent: int = 10
    rpc_timeout: int = 10
    rpc_max_retries: int = 3
    detection_concurrency: int = 10
    detection_call_timeout: float = 5.0
    ingest_interval: float = Field(default=300.0, description="Seconds between head ingestions")
    cleanup_interval: float = Field(default=3600.0, description="Seconds between retention sweeps")
    ttl_days: float = Field(default=0.0, description="Transaction retention in days; <= 0 disables the sweep")
    cleanup_batch_size: int = 1000
    job_max_attempts: int = 3
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        dotenv.load_dotenv(env_file)

        values = {}
        rpc_urls = os.getenv("TEMPO_RPC_URL")
        if rpc_urls:
            values["rpc_urls"] = [url.strip() for url in rpc_urls.split(",") if url.strip()]

        env_fields = {
            "DATABASE_URL": "database_url",
            "RPC_MAX_CONCURRENT": "rpc_max_concurrent",
            "RPC_TIMEOUT": "rpc_timeout",
            "RPC_MAX_RETRIES": "rpc_max_retries",
            "DETECTION_CONCURRENCY": "detection_concurrency",
            "DETECTION_CALL_TIMEOUT": "detection_call_timeout",
            "INGEST_INTERVAL_SECONDS": "ingest_interval",
            "CLEANUP_INTERVAL_SECONDS": "cleanup_interval",
            "TRANSACTION_TTL_DAYS": "ttl_days",
            "CLEANUP_BATCH_SIZE": "cleanup_batch_size",
            "JOB_MAX_ATTEMPTS": "job_max_attempts",
            "LOG_LEVEL": "log_level",
        }
        for env_name, field_name in env_fields.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value

        return cls.model_validate(values)
