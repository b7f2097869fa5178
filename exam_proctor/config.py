from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    # Application Settings
    APP_NAME: str = "Exam Proctor"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    @property
    def debug(self) -> bool:
        return self.DEBUG

    # Local bridge API
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    HOST: str = "127.0.0.1"
    PORT: int = 8765

    @property
    def host(self) -> str:
        return self.HOST

    @property
    def port(self) -> int:
        return self.PORT

    # Exam Service (REST backend)
    EXAM_API_URL: str = "http://localhost:5000/api"
    EXAM_API_TOKEN: str = ""
    EXAM_API_TIMEOUT: float = 15.0

    # Session timing
    TIMER_TICK_SECONDS: float = 1.0
    VIOLATION_WARNING_SECONDS: float = 3.0

    # Proctoring Settings
    DEFAULT_TAB_SWITCH_LIMIT: int = 3
    PROCTORING_SNAPSHOT_INTERVAL: float = 30.0  # seconds
    SNAPSHOT_JPEG_QUALITY: int = 50

    # Camera
    CAMERA_INDEX: int = 0
    CAMERA_FRAME_WIDTH: int = 320
    CAMERA_FRAME_HEIGHT: int = 240

    # Pre-flight browser check (substring match against the user agent)
    BROWSER_ALLOW_LIST: List[str] = ["Chrome", "Firefox", "Edg", "Safari"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
