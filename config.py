from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "collabolab"

    # "websocket" delivers over /ws/devices/{token}; "memory" only records
    PUSH_BACKEND: str = "websocket"
    SESSION_TTL_DAYS: int = 7
    REQUIRE_INVITE: bool = False

    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    class Config:
        env_file = ".env"


settings = Settings()
