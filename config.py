import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Database settings
    db_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "5"))  # seconds

    # Circulation rules
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    max_books_per_member: int = int(os.getenv("MAX_BOOKS_PER_MEMBER", "3"))
    fine_per_day: float = float(os.getenv("FINE_PER_DAY", "0.5"))
    suspension_overdue_threshold: int = int(os.getenv("SUSPENSION_OVERDUE_THRESHOLD", "3"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Management System")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()

LOAN_PERIOD_DAYS = settings.loan_period_days
MAX_BOOKS_PER_MEMBER = settings.max_books_per_member
FINE_PER_DAY = settings.fine_per_day
SUSPENSION_OVERDUE_THRESHOLD = settings.suspension_overdue_threshold
