from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Behavior Tracker"
    API_V1_STR: str = "/api/v1"
    TRACKING_PREFIX: str = "/api/t"  # Public ingestion endpoints hit by the tracker

    DATABASE_URL: str = "sqlite:///./tracking.db"

    SECRET_KEY: str = "change-me"  # Must be set via environment variable in production
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080  # 7 days

    # The tracker runs on arbitrary third-party pages
    CORS_ORIGINS: List[str] = ["*"]

    # Error tracking
    SENTRY_DSN: str = ""
    ENVIRONMENT: str = "development"

    # Rage/dead-click classification
    RAGE_CLICK_WINDOW_MS: int = 2000
    RAGE_CLICK_THRESHOLD: int = 3

    # Heatmap aggregation
    CLICK_GRID_SIZE: int = 50  # px per square cell
    HEATMAP_MAX_ROWS: int = 5000  # Row cap per heatmap query
    HEATMAP_TOP_CELLS: int = 200
    ATTENTION_ZONE_COUNT: int = 10

    # Ingestion payload caps
    MAX_CLICKS_PER_BATCH: int = 50
    MAX_POINTER_SAMPLES: int = 500
    MAX_FUNNEL_STEPS: int = 20
    SCROLL_MERGE_RETRIES: int = 5
    INGEST_RATE_LIMIT: int = 600  # requests per IP per minute

    REALTIME_WINDOW_SECONDS: int = 300

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
