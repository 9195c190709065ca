import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "instance")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "partner_portal.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-partner-portal")
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)
    APP_USERS = os.environ.get("APP_USERS", "admin@demo.com:admin123::Sourcing Admin:admin")

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CERTIFICATION_LOOSE_MATCH = _bool_env("CERTIFICATION_LOOSE_MATCH", False)
    VISIBILITY_FAIL_OPEN = _bool_env("VISIBILITY_FAIL_OPEN", False)
    TENDER_NDA_REQUIRED = _bool_env("TENDER_NDA_REQUIRED", False)
    NDA_VERSION = os.environ.get("NDA_VERSION", "1.0")
    COMPLIANCE_EXPIRY_WARNING_DAYS = _int_env("COMPLIANCE_EXPIRY_WARNING_DAYS", 30)
    TENDER_URGENCY_DAYS = _int_env("TENDER_URGENCY_DAYS", 30)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required in production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-partner-portal":
            raise RuntimeError("Refusing to start in production with the development SECRET_KEY.")
