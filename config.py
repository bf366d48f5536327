import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as visitslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "visitslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Public base URL of this service (callback + result pages derive from it)
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5002").rstrip("/")

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "visitslot_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    # Cancellation policy
    CANCEL_CUTOFF_HOURS = int(os.getenv("CANCEL_CUTOFF_HOURS", "24"))

    # Slot dates and times are wall-clock times in this zone
    CENTER_TIMEZONE = os.getenv("CENTER_TIMEZONE", "Africa/Casablanca")

    # Booking numbers: PREFIX + 8 time digits + 3 random digits
    BOOKING_NUMBER_PREFIX = os.getenv("BOOKING_NUMBER_PREFIX", "VT")
    BOOKING_NUMBER_RETRIES = int(os.getenv("BOOKING_NUMBER_RETRIES", "5"))

    # CMI payment gateway
    CMI_MERCHANT_ID = os.getenv("CMI_MERCHANT_ID", "")
    CMI_SECRET_KEY = os.getenv("CMI_SECRET_KEY", "")
    CMI_GATEWAY_URL = os.getenv("CMI_GATEWAY_URL", "https://testpayment.cmi.co.ma/fim/est3Dgate")
    CMI_OK_URL = os.getenv("CMI_OK_URL")
    CMI_FAIL_URL = os.getenv("CMI_FAIL_URL")
    CMI_SHOP_URL = os.getenv("CMI_SHOP_URL")
    CMI_CURRENCY = os.getenv("CMI_CURRENCY", "504")  # ISO 4217 numeric, MAD
    CMI_CURRENCY_CODE = os.getenv("CMI_CURRENCY_CODE", "MAD")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    # SMS (Twilio); left unset, the SMS channel is skipped
    TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER")

    # Notification dispatch
    NOTIFY_WORKERS = int(os.getenv("NOTIFY_WORKERS", "2"))
    NOTIFY_INLINE = False

    # Create missing tables at startup (tests, throwaway dev databases)
    CREATE_ALL = os.getenv("CREATE_ALL", "false").lower() == "true"

    # Basic app settings
    DEBUG = False
