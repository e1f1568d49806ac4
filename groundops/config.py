from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional, List


class Settings(BaseSettings):
    # Core
    environment: str = Field(default="dev")
    app_name: str = Field(default="Ground Ops Portal API")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Hosted store (Supabase)
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_anon_key: str = Field(default="", alias="SUPABASE_ANON_KEY")
    store_provider: str = Field(default="supabase", alias="STORE_PROVIDER", description="supabase|local")
    realtime_channel: str = Field(default="full-app-sync", alias="REALTIME_CHANNEL")
    request_timeout_s: float = Field(default=30.0, alias="REQUEST_TIMEOUT_S")

    # Storage
    storage_provider: str = Field(default="supabase", alias="STORAGE_PROVIDER", description="supabase|local")
    documents_bucket: str = Field(default="documents", alias="DOCUMENTS_BUCKET")
    local_storage_dir: str = Field(default="var/storage", alias="LOCAL_STORAGE_DIR")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    # Sessions / JWT
    jwt_secret: str = Field(default="change-me", alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256")
    jwt_ttl_seconds: int = Field(default=60 * 60 * 12, alias="JWT_TTL")  # 12 hours
    default_password: str = Field(default="123456", alias="DEFAULT_PASSWORD")

    # Portal
    broadcast_user_id: str = Field(default="00000000-0000-0000-0000-000000000000", alias="BROADCAST_USER_ID")
    toast_ttl_seconds: float = Field(default=8.0, alias="TOAST_TTL_SECONDS")
    departments: List[str] = Field(
        default=["Operations", "Maintenance", "Security", "Baggage", "IT", "Customer Service"],
        alias="DEPARTMENTS",
    )

    # AI analysis (Gemini)
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-3-flash-preview", alias="GEMINI_MODEL")
    analysis_timeout_s: float = Field(default=20.0, alias="ANALYSIS_TIMEOUT_S")

    # Rate limit
    rate_limit: str = Field(default="100/minute", alias="RATE_LIMIT")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


def is_store_configured(cfg: "Settings") -> bool:
    return (
        len(cfg.supabase_url) > 0
        and len(cfg.supabase_anon_key) > 0
        and "your-project-url" not in cfg.supabase_url
    )


settings = Settings()
