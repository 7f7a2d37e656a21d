"""Application settings"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase (service role key, bypasses RLS)
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_price_hobbyist: str = ""
    stripe_price_indie: str = ""
    stripe_price_pro: str = ""
    stripe_data_sharing_coupon_id: str = "DATA_SHARING_10"

    # A2E video/avatar generation
    a2e_api_key: str = ""
    a2e_base_url: str = "https://video.a2e.ai/api/v1"
    a2e_poll_interval_seconds: float = 5.0
    # 180 x 5s = 15 minutes
    a2e_poll_max_attempts: int = 180

    # OpenAI speech synthesis
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"

    # RunComfy GPU workflows
    runcomfy_api_token: str = ""
    runcomfy_base_url: str = "https://api.runcomfy.com/v1"
    runcomfy_deployment_id: str = ""
    dzine_workflow_id: str = "dzine-i2i-workflow"
    # Wan2.2-Fun-Inp first/last frame sequences
    runcomfy_user_id: str = ""
    wan_fun_inp_deployment_id: str = ""
    runcomfy_poll_interval_seconds: float = 5.0
    # 60 x 5s = 5 minutes
    runcomfy_poll_max_attempts: int = 60

    # Outbound HTTP
    http_timeout_seconds: float = 120.0

    # CORS
    allowed_origins: str = "http://localhost:3000"

    # App
    environment: str = "development"
    log_level: str = "INFO"
    site_url: str = "http://localhost:3000"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


settings = Settings()
