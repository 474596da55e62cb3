from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    DATA_DIR: str = "./data"

    CALENDLY_WEBHOOK_SIGNING_KEY: str | None = None
    CALENDLY_WEBHOOK_SIGNING_KEY_SECONDARY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_SECRET_SECONDARY: str | None = None
    WEBHOOK_REPLAY_WINDOW_SECONDS: int = 300

    # Must stay under the providers' own delivery timeouts
    WEBHOOK_TIMEOUT_BUDGET_SECONDS: float = 4.0
    MISSING_BOOKING_MAX_ATTEMPTS: int = 3
    MISSING_BOOKING_BASE_DELAY_SECONDS: float = 0.25
    CONCURRENCY_MAX_ATTEMPTS: int = 5

    DISPATCH_MAX_ATTEMPTS: int = 4
    DISPATCH_BASE_DELAY_SECONDS: float = 0.5
    DISPATCH_MAX_DELAY_SECONDS: float = 8.0

    REFUND_FULL_NOTICE_HOURS: int = 24
    REFUND_PARTIAL_NOTICE_HOURS: int = 12
    REFUND_PARTIAL_PERCENT: int = 50

    STRIPE_SECRET_KEY: str | None = None
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"

    SENDGRID_API_KEY: str | None = None
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    SENDGRID_FROM_EMAIL: str = "bookings@example.com"
    SENDGRID_TEMPLATE_CONFIRMATION: str = "booking-confirmation"
    SENDGRID_TEMPLATE_CANCELLATION: str = "booking-cancellation"
    SENDGRID_TEMPLATE_NO_SHOW: str = "booking-no-show"


settings = Settings()
