from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str

    mqtt_enabled: bool
    mqtt_broker_host: str
    mqtt_broker_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_topic_namespace: str

    ingest_queue_size: int
    ingest_num_workers: int
    notify_queue_size: int
    notify_num_workers: int
    webhook_timeout_seconds: float
    realtime_subscriber_queue_size: int

    offline_threshold_seconds: float
    sweep_interval_seconds: float
    check_timeout_seconds: float

    live_state_backend: str
    redis_url: str

    sensor_error_delta_abs: float
    max_plausible_weight: float
    restock_delta_min: float
    batch_usage_delta_min: float
    significant_change_delta: float

    ingest_api_key: Optional[str]
    log_level: str


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("RACK_ENV_FILE", ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./rack_ingest.db"),
        mqtt_enabled=_env_bool("MQTT_ENABLED", "true"),
        mqtt_broker_host=os.getenv("MQTT_BROKER_HOST", "localhost"),
        mqtt_broker_port=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_topic_namespace=os.getenv("MQTT_TOPIC_NAMESPACE", "intellirack"),
        ingest_queue_size=int(os.getenv("INGEST_QUEUE_SIZE", "1000")),
        ingest_num_workers=int(os.getenv("INGEST_NUM_WORKERS", "4")),
        notify_queue_size=int(os.getenv("NOTIFY_QUEUE_SIZE", "500")),
        notify_num_workers=int(os.getenv("NOTIFY_NUM_WORKERS", "2")),
        webhook_timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "5")),
        realtime_subscriber_queue_size=int(os.getenv("REALTIME_SUBSCRIBER_QUEUE_SIZE", "256")),
        offline_threshold_seconds=float(os.getenv("HEARTBEAT_OFFLINE_THRESHOLD_SECONDS", "30")),
        sweep_interval_seconds=float(os.getenv("HEARTBEAT_SWEEP_INTERVAL_SECONDS", "10")),
        check_timeout_seconds=float(os.getenv("HEARTBEAT_CHECK_TIMEOUT_SECONDS", "2")),
        # "memory" keeps liveness per process; "redis" shares it between replicas.
        live_state_backend=os.getenv("LIVE_STATE_BACKEND", "memory").strip().lower(),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        sensor_error_delta_abs=float(os.getenv("CLASSIFIER_SENSOR_ERROR_DELTA_ABS", "10000")),
        max_plausible_weight=float(os.getenv("CLASSIFIER_MAX_PLAUSIBLE_WEIGHT", "20000")),
        restock_delta_min=float(os.getenv("CLASSIFIER_RESTOCK_DELTA_MIN", "100")),
        batch_usage_delta_min=float(os.getenv("CLASSIFIER_BATCH_USAGE_DELTA_MIN", "1000")),
        significant_change_delta=float(os.getenv("CLASSIFIER_SIGNIFICANT_CHANGE_DELTA", "10")),
        ingest_api_key=os.getenv("INGEST_API_KEY") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
