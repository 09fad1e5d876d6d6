"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated, e.g. http://localhost:3000,https://comics.example.com. Empty = default list in main.py.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # WALLET AUTH (SIWE)
    # ===========================================
    siwe_domain: str = "localhost:3000"
    siwe_uri: str = "http://localhost:3000"
    siwe_statement: str = "Sign in to Web3 Comic Platform with your wallet."
    siwe_chain_id: int = 1
    nonce_ttl_seconds: int = 600  # 10 minutes
    session_secret: str  # Required, no default
    session_ttl_seconds: int = 86400  # 24 hours

    # ===========================================
    # ON-CHAIN PAYMENTS
    # ===========================================
    # JSON: {"<chainId>": {"rpc_url": "...", "contract": "0x..."}}
    payment_networks: str = "{}"
    min_confirmations: int = 3
    chain_rpc_timeout: float = 10.0
    # JSON: {"<packageId>": {"credits": 500, "bonus": 25}}; bonus is a percentage
    credit_packages: str = (
        '{"0": {"credits": 100, "bonus": 0}, '
        '"1": {"credits": 500, "bonus": 25}, '
        '"2": {"credits": 1000, "bonus": 50}}'
    )

    # ===========================================
    # CONTENT CATALOG
    # ===========================================
    # Empty = catalog not configured, every content unit costs default_unlock_cost
    catalog_api_base: str = ""
    catalog_timeout: float = 5.0
    default_unlock_cost: int = 5

    # ===========================================
    # ADMIN
    # ===========================================
    admin_credit_adjustment_limit: int = 10_000

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("session_secret")
    @classmethod
    def validate_session_secret(cls, v: str) -> str:
        """Ensure session secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("session_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("session_secret is too weak, please change it")
        return v

    @field_validator("min_confirmations")
    @classmethod
    def validate_min_confirmations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_confirmations must be at least 1")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
