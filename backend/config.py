from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Dose Companion"
    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:///data/dose_companion.db"
    DATA_DIR: Path = Path("data")
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:8050",
        "https://localhost:8050",
    ]
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = 72
    AUTH_COOKIE_NAME: str = "dose_session"
    AUTH_COOKIE_SECURE: bool = False
    AUTH_COOKIE_HTTPONLY: bool = True
    AUTH_COOKIE_SAMESITE: str = "lax"  # strict | lax | none
    AUTH_COOKIE_DOMAIN: str | None = None
    AUTH_COOKIE_PATH: str = "/"
    SECURITY_HEADERS_ENABLED: bool = True
    DEFAULT_TIMEZONE: str = "UTC"
    REMINDER_POLL_INTERVAL_SECONDS: int = 60
    REMINDER_ALARM_WINDOW_SECONDS: int = 600
    REMINDER_AUTOSTART_ON_LOGIN: bool = True
    ADHERENCE_LOOKBACK_DAYS: int = 30
    UPCOMING_DOSES_LIMIT: int = 5
    RECENT_ACHIEVEMENTS_LIMIT: int = 5

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    def validate_security_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if self.SECRET_KEY == "change-me-in-production":
            errors.append("SECRET_KEY must be changed from the default value")
        if not self.AUTH_COOKIE_SECURE:
            errors.append("AUTH_COOKIE_SECURE must be true in production-like environments")
        if (self.AUTH_COOKIE_SAMESITE or "").strip().lower() == "none" and not self.AUTH_COOKIE_SECURE:
            errors.append("AUTH_COOKIE_SAMESITE=none requires AUTH_COOKIE_SECURE=true")
        if self.REMINDER_POLL_INTERVAL_SECONDS < 1:
            errors.append("REMINDER_POLL_INTERVAL_SECONDS must be positive")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Insecure production configuration: {joined}")


# Reminder defaults applied when a user has no settings row yet.
DEFAULT_SOUND_ENABLED = True
DEFAULT_RINGTONE = "default"
DEFAULT_SNOOZE_MINUTES = 15
DEFAULT_DARK_MODE = False

RINGTONES: dict[str, str] = {
    "default": "https://assets.mixkit.co/sfx/preview/mixkit-alarm-digital-clock-beep-989.mp3",
    "chime": "https://assets.mixkit.co/sfx/preview/mixkit-software-interface-start-2574.mp3",
    "gentle": "https://assets.mixkit.co/sfx/preview/mixkit-morning-clock-alarm-1003.mp3",
    "urgent": "https://assets.mixkit.co/sfx/preview/mixkit-alarm-tone-996.mp3",
}


def ringtone_url(key: str | None) -> str:
    return RINGTONES.get((key or "").strip().lower()) or RINGTONES[DEFAULT_RINGTONE]


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
