from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ======================
    # Database
    # ======================
    DATABASE_URL: str = ""
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_NAME: str = "lms"
    AUTO_CREATE_TABLES: bool = True

    # =========
    # App
    # =========
    APP_NAME: str = "LMS Test Engine"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "*"

    # =========
    # JWT
    # =========
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # =========
    # Attempts
    # =========
    DEFAULT_PASSING_SCORE: float = 70.0
    ENFORCE_TIME_LIMIT: bool = True
    TIME_LIMIT_GRACE_SECONDS: int = 5

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
