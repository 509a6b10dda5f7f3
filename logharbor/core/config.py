from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Kafka ─────────────────────────────────────────────────
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_TOPIC: str = "logs"
    KAFKA_GROUP_ID: str = "log-processor-group"
    KAFKA_POLL_TIMEOUT_SEC: float = 0.1

    # ── Elasticsearch ─────────────────────────────────────────
    ELASTICSEARCH_URL: str = "http://localhost:9200"
    ELASTICSEARCH_INDEX: str = "logs"
    INDEX_WORKERS: int = 8
    INDEX_QUEUE_SIZE: int = 1000

    # ── Live stream (WebSocket listener) ──────────────────────
    WS_HOST: str = "0.0.0.0"
    WS_PORT: int = 8080
    WS_PATH: str = "/ws"
    WS_MAX_MESSAGE_BYTES: int = 512
    BROADCAST_QUEUE_SIZE: int = 1000
    SESSION_BUFFER_SIZE: int = 256
    PING_INTERVAL_SEC: float = 54.0
    READ_TIMEOUT_SEC: float = 60.0

    # ── Health API ────────────────────────────────────────────
    HEALTH_HOST: str = "0.0.0.0"
    HEALTH_PORT: int = 8081
    LOG_LEVEL: str = "INFO"
    SHUTDOWN_TIMEOUT_SEC: float = 5.0

    # ── Redis stats sink (disabled when empty) ────────────────
    REDIS_URL: str = ""
    REDIS_STATS_KEY: str = "logharbor:processor:stats"
    STATS_INTERVAL_SEC: float = 5.0

    # ── Log agent ─────────────────────────────────────────────
    SERVICE_NAME: str = "log-agent"
    AGENT_INTERVAL_SEC: float = 2.0


settings = Settings()
