from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Orderflow"
    API_V1_STR: str = "/api/v1"

    POSTGRES_SERVER: str
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    # Redis Configuration
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None

    # Redis TTLs (seconds)
    USER_CACHE_TTL: int = 86400  # 24 hours
    PROCESSED_EVENT_TTL: int = 604800  # 7 days
    PROCESSED_WEBHOOK_TTL: int = 604800  # 7 days

    # Kafka Configuration
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_CONSUMER_GROUP_ID: str = "orderflow-notifications"

    # Kafka Topics
    KAFKA_TOPIC_ORDER_CREATED: str = "order.created"
    KAFKA_TOPIC_ORDER_STATUS_CHANGED: str = "order.status_changed"
    KAFKA_TOPIC_ORDER_PAYMENT_UPDATED: str = "order.payment_updated"

    # External Services
    IDENTITY_SERVICE_URL: str = "http://localhost:8001"
    NOTIFICATION_SERVICE_URL: str = "http://localhost:8002"
    DOCUMENT_SERVICE_URL: str = "http://localhost:8003"
    COLLABORATOR_TIMEOUT_SECONDS: float = 10.0
    COLLABORATOR_MAX_ATTEMPTS: int = 3
    FRONTEND_URL: str = "http://localhost:3000"

    # Orders
    DEFAULT_CURRENCY: str = "INR"
    DEFAULT_ESTIMATED_DELIVERY_DAYS: int = 5
    ORDERS_PAGE_LIMIT_MAX: int = 100

    # Payment gateways (shared)
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    GATEWAY_TOKEN_SAFETY_MARGIN_SECONDS: int = 60

    # Gateway A: Razorpay (signature verified)
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com"
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""

    # Gateway B: PhonePe v2 (OAuth token + status polling + webhook)
    PHONEPE_ENV: str = "UAT"  # UAT or PRODUCTION
    PHONEPE_CLIENT_ID: str = ""
    PHONEPE_CLIENT_SECRET: str = ""
    PHONEPE_CLIENT_VERSION: str = "1"
    PHONEPE_MERCHANT_ID: str = ""
    PHONEPE_PAYMENT_EXPIRY_SECONDS: int = 1200  # 20 minutes
    PHONEPE_WEBHOOK_USERNAME: str | None = None
    PHONEPE_WEBHOOK_PASSWORD: str | None = None

    # Gateway C: PayPal v2 (create + capture)
    PAYPAL_ENV: str = "SANDBOX"  # SANDBOX or LIVE
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_BRAND_NAME: str = "Infinite Creations"

    # Metrics Configuration
    ENABLE_METRICS: bool = True

    # Payment sweeper (seconds)
    PAYMENT_SWEEP_INTERVAL: int = 60  # How often pending intents are re-queried
    PAYMENT_SWEEP_MIN_AGE_SECONDS: int = 300  # Leave fresh intents to the client flow
    PAYMENT_SWEEP_BATCH_SIZE: int = 50

    # Outbox Worker Configuration
    OUTBOX_BATCH_SIZE: int = 100  # Maximum events to process per batch
    OUTBOX_POLL_INTERVAL_SECONDS: int = 1  # How often to check for new events
    OUTBOX_ERROR_BACKOFF_SECONDS: int = 5  # Sleep duration after errors
    OUTBOX_MAX_RETRY_ATTEMPTS: int = 5  # Max attempts before flagging for manual intervention
    OUTBOX_ERROR_MESSAGE_MAX_LENGTH: int = 500  # Max characters to store in last_error field
    METRICS_PORT: int = 8000

    # Logging Configuration
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_FORMAT: str = "json"  # json or console
    ENVIRONMENT: str = "development"  # development, staging, production
    SERVICE_NAME: str = "orderflow"
    SERVICE_VERSION: str = "v1.0.0"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        return f"postgresql+psycopg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @computed_field
    @property
    def REDIS_URL(self) -> str:
        """Construct Redis connection URL"""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @computed_field
    @property
    def PHONEPE_BASE_URL(self) -> str:
        if self.PHONEPE_ENV.upper() == "PRODUCTION":
            return "https://api.phonepe.com/apis/pg"
        return "https://api-preprod.phonepe.com/apis/pg-sandbox"

    @computed_field
    @property
    def PAYPAL_BASE_URL(self) -> str:
        if self.PAYPAL_ENV.upper() == "LIVE":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    @property
    def order_topics(self) -> list[str]:
        return [
            self.KAFKA_TOPIC_ORDER_CREATED,
            self.KAFKA_TOPIC_ORDER_STATUS_CHANGED,
            self.KAFKA_TOPIC_ORDER_PAYMENT_UPDATED,
        ]


settings = Settings()  # type: ignore
