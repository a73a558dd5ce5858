from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


ALLOWED_CATEGORIES = "outdoor|indoor|museum|park|playground|water|hike|creative|festival|show|seasonal|other"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    backend_base_url: str = "http://localhost:3000"
    store_base_url: str | None = None

    geocoding_base_url: str = "https://geocoding-api.open-meteo.com"
    weather_base_url: str = "https://api.open-meteo.com"
    holidays_base_url: str = "https://date.nager.at"
    wikidata_base_url: str = "https://query.wikidata.org"

    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_model: str = "gpt-4o-mini"
    enable_ai_holidays: bool = True

    allowed_categories: str = ALLOWED_CATEGORIES

    provider_timeout_sec: float = 10.0
    holiday_timeout_sec: float = 8.0
    ai_holiday_timeout_sec: float = 30.0
    recommendation_timeout_sec: float = 120.0
    recommendation_max_retries: int = 2
    retry_delay_sec: float = 2.0

    festival_radius_km: float = 60.0
    festival_window_days: int = 7
    festival_limit: int = 10
    holiday_match_window_days: int = 3
    ai_holiday_window_days: int = 3

    success_display_sec: float = 1.0
    error_display_sec: float = 8.0
    duration_history_size: int = 10
    abort_in_flight_on_cancel: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
