"""
Order Service — 設定

環境変数 (と .env) から一度だけ読み込む。

  DATABASE_URL               未設定・空ならメモリ上のリポジトリを使う
  REDIS_URL                  redis://localhost:6379
  MESSAGING_PROVIDER         redis | memory
  ORDERS_CONSUMER_GROUP      orders-service-group
  ORDERS_CONSUMER_NAME       ホスト名
  ORDERS_CLAIM_IDLE_SECONDS  60 (これ以上 ACK されないエントリを引き取る)
  REQUEST_TIMEOUT_SECONDS    10
  LOG_LEVEL                  INFO
"""

import socket
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=False, extra="ignore", env_file=".env", env_ignore_empty=True
    )

    database_url: str | None = None
    redis_url: str = "redis://localhost:6379"
    messaging_provider: Literal["redis", "memory"] = "redis"
    consumer_group: str = Field(
        default="orders-service-group",
        validation_alias=AliasChoices("consumer_group", "ORDERS_CONSUMER_GROUP"),
    )
    consumer_name: str = Field(
        default_factory=socket.gethostname,
        validation_alias=AliasChoices("consumer_name", "ORDERS_CONSUMER_NAME"),
    )
    claim_idle: float = Field(
        default=60.0, gt=0, validation_alias=AliasChoices("claim_idle", "ORDERS_CLAIM_IDLE_SECONDS")
    )
    request_timeout: float = Field(
        default=10.0, gt=0, validation_alias=AliasChoices("request_timeout", "REQUEST_TIMEOUT_SECONDS")
    )
    log_level: str = "INFO"
