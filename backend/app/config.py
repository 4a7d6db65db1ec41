from pydantic_settings import BaseSettings

from prompt_packager.client import DEFAULT_BASE_URL, DEFAULT_MODEL, GatewayConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # AI gateway (OpenAI-compatible chat completions)
    ai_gateway_api_key: str = ""
    ai_gateway_base_url: str = DEFAULT_BASE_URL
    ai_model: str = DEFAULT_MODEL
    ai_timeout_seconds: float = 120.0
    ai_max_retries: int = 0
    # generate-prompt passes this through as max_tokens
    ai_generate_max_tokens: int = 8000

    # Database
    database_url: str = "sqlite:///./prompt_packager.db"

    # CORS origins. Auth is header based (Bearer / x-worker-key), not cookies.
    cors_allow_origins: list[str] = ["*"]

    # Shared secret for jobs-claim / jobs-report (x-worker-key header).
    # Empty means those functions reject every caller.
    worker_key: str = ""
    # process-jobs is open by default; set true to require x-worker-key
    process_jobs_require_worker_key: bool = False

    # Rows stuck in "processing" longer than this are returned to the queue
    claim_timeout_seconds: int = 900

    log_level: str = "INFO"

    # Bind address for `python -m app.main`
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = {"env_file": ".env"}

    def gateway_config(self) -> GatewayConfig:
        """Gateway settings for the packaging pipeline."""
        return GatewayConfig(
            api_key=self.ai_gateway_api_key,
            base_url=self.ai_gateway_base_url,
            model=self.ai_model,
            timeout_seconds=self.ai_timeout_seconds,
            max_retries=self.ai_max_retries,
        )


settings = Settings()
