from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./fuelpos.db"
    SECRET_KEY: str = "dev-insecure-key-change-in-production"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 720

    # CORS origins, given as a JSON list in the environment
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Account lockout
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Business day boundaries are evaluated in this zone
    APP_TIMEZONE: str = "Asia/Bangkok"

    # ── Reconciliation policy ────────────────────────────────────────────
    # |variance| <= tolerance is BALANCED; 0 keeps the status sign-exact
    VARIANCE_BALANCED_TOLERANCE: Decimal = Decimal("0")
    # Display severity bands (baht): <= warning GREEN, <= critical YELLOW, else RED
    VARIANCE_WARNING_THRESHOLD: Decimal = Decimal("200")
    VARIANCE_CRITICAL_THRESHOLD: Decimal = Decimal("500")
    REQUIRE_VARIANCE_NOTE: bool = True
    UNLOCKED_SHIFT_ALERT_HOURS: int = 24

    # ── Gauge colour bands (percent full) ────────────────────────────────
    GAUGE_LOW_PERCENT: Decimal = Decimal("20")
    GAUGE_MEDIUM_PERCENT: Decimal = Decimal("40")
    GAUGE_HIGH_PERCENT: Decimal = Decimal("70")

    # ── Station defaults ─────────────────────────────────────────────────
    DEFAULT_NOZZLE_COUNT: int = 4
    DEFAULT_TANK_COUNT: int = 3
    TANK_CAPACITY_LITERS: int = 2400
    DEFAULT_FUEL_PRICE: Decimal = Decimal("16.09")

    # ── Transaction limits ───────────────────────────────────────────────
    MAX_TRANSACTION_AMOUNT: Decimal = Decimal("100000")
    MAX_TRANSACTION_LITERS: Decimal = Decimal("5000")

    # ── Credit billing ───────────────────────────────────────────────────
    # Monthly statements are dated the 1st and due on this day of the month
    INVOICE_DUE_DAY: int = 15
    # Ad-hoc invoices fall due this many days after issue
    INVOICE_PAYMENT_TERMS_DAYS: int = 15

    # ── Meter anomalies ──────────────────────────────────────────────────
    # Allowed difference between a start reading and the previous end reading
    METER_CONTINUITY_TOLERANCE: Decimal = Decimal("0.01")
    # Sold litres per nozzle compared with the average of recent closed shifts
    ANOMALY_LOOKBACK_DAYS: int = 7
    ANOMALY_WARNING_PERCENT: Decimal = Decimal("50")
    ANOMALY_CRITICAL_PERCENT: Decimal = Decimal("100")


settings = Settings()
