"""Configuration management for Coach Hub."""

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App settings
    app_name: str = "Coach Hub"
    env: str = Field(default="dev", alias="ENV")
    debug: bool = False
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
    )
    app_url: str = Field(default="http://localhost:3000", alias="NEXT_PUBLIC_APP_URL")

    # Gemini API
    google_api_key: str = Field(default="", alias="GOOGLE_API_KEY")
    gemini_flash_model: str = Field(default="gemini-1.5-flash", alias="GEMINI_FLASH_MODEL")
    gemini_pro_model: str = Field(default="gemini-1.5-pro", alias="GEMINI_PRO_MODEL")

    # Supabase
    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")
    supabase_service_role_key: Optional[str] = Field(default=None, alias="SUPABASE_SERVICE_ROLE_KEY")

    # Cloudflare R2
    r2_account_id: Optional[str] = Field(default=None, alias="R2_ACCOUNT_ID")
    r2_access_key_id: Optional[str] = Field(default=None, alias="R2_ACCESS_KEY_ID")
    r2_secret_access_key: Optional[str] = Field(default=None, alias="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: str = Field(default="coachhub-film", alias="R2_BUCKET_NAME")
    r2_endpoint: Optional[str] = Field(default=None, alias="R2_ENDPOINT")

    # Stripe
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_plus_monthly: Optional[str] = Field(default=None, alias="STRIPE_PRICE_PLUS_MONTHLY")
    stripe_price_plus_yearly: Optional[str] = Field(default=None, alias="STRIPE_PRICE_PLUS_YEARLY")
    stripe_price_premium_monthly: Optional[str] = Field(default=None, alias="STRIPE_PRICE_PREMIUM_MONTHLY")
    stripe_price_premium_yearly: Optional[str] = Field(default=None, alias="STRIPE_PRICE_PREMIUM_YEARLY")
    token_pack_price_cents: int = Field(default=1000, alias="TOKEN_PACK_PRICE_CENTS")
    tokens_per_pack: int = Field(default=1, alias="TOKENS_PER_PACK")

    # Trials
    trial_default_days: int = Field(default=14, alias="TRIAL_DEFAULT_DAYS")
    trial_default_ai_credits: int = Field(default=25, alias="TRIAL_DEFAULT_AI_CREDITS")

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True

    @property
    def r2_configured(self) -> bool:
        """Check if R2 storage is configured."""
        return all([
            self.r2_account_id,
            self.r2_access_key_id,
            self.r2_secret_access_key,
            self.r2_endpoint,
        ])

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase is configured."""
        return all([
            self.supabase_url,
            self.supabase_anon_key,
        ])

    @property
    def gemini_configured(self) -> bool:
        """Check if Gemini API is configured."""
        return bool(self.google_api_key)

    @property
    def stripe_configured(self) -> bool:
        """Check if Stripe billing is configured."""
        return bool(self.stripe_secret_key)

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def price_ids(self) -> dict[str, Optional[str]]:
        """Stripe price id for each tier/billing-cycle pair."""
        return {
            "plus_monthly": self.stripe_price_plus_monthly,
            "plus_yearly": self.stripe_price_plus_yearly,
            "premium_monthly": self.stripe_price_premium_monthly,
            "premium_yearly": self.stripe_price_premium_yearly,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for quick access
settings = get_settings()
