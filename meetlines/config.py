from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Store
    database_url: str = "sqlite:///./meetlines.db"
    store_anon_key: str = ""  # empty = apikey header not enforced
    store_service_role_key: str = ""  # bearer token accepted by service-only functions
    store_jwt_secret: str = "dev-jwt-secret-change-me"
    store_jwt_audience: str = "authenticated"

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_connect_country: str = "BR"
    stripe_currency: str = "brl"

    # AI gateway (OpenAI-compatible chat completions)
    ai_gateway_api_key: str = ""
    ai_gateway_url: str = "https://ai.gateway.lovable.dev/v1"
    ai_model: str = "google/gemini-2.5-flash"
    ai_rate_limit: str = "10/minute"

    # Application
    base_url: str = "http://localhost:8000"  # where this API (and public storage) is served
    site_url: str = "http://localhost:5173"  # web client, used for Stripe redirect URLs
    uploads_dir: str = "uploads"

    # CORS
    cors_origins: str = ""  # Comma-separated allowed origins (empty = allow all)

    # Scheduled jobs
    scheduler_enabled: bool = True
    auto_end_interval_minutes: int = 15

    # City catalogue
    cities_source_url: str = "https://servicodados.ibge.gov.br/api/v1/localidades/municipios"
    cities_country: str = "Brasil"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
