import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./datathon.db")

    # Redis configuration (leaderboard cache). Empty disables the cache.
    REDIS_URL: str = os.getenv("REDIS_URL", "")
    LEADERBOARD_CACHE_TTL_SECONDS: int = int(os.getenv("LEADERBOARD_CACHE_TTL_SECONDS", "30"))

    # Answer key backing files: "local" directory or "supabase" bucket
    ANSWER_KEY_STORAGE: str = os.getenv("ANSWER_KEY_STORAGE", "local")
    ANSWER_KEY_DIR: str = os.getenv("ANSWER_KEY_DIR", "./answer_keys")

    # Supabase configuration (all from env)
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "")
    SUPABASE_BUCKET: str = os.getenv("SUPABASE_BUCKET", "answer-keys")

    # Admin routes require this key in the X-Admin-Key header
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

    # Uploaded tables
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
    TABLE_DELIMITER: str = os.getenv("TABLE_DELIMITER", ",")

    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    class Config:
        # Let BaseSettings read from project .env if present (local dev).
        env_file = ".env"
        extra = "ignore"


settings = Settings()
