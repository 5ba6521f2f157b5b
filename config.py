"""Backend settings."""

from typing import Dict, List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    public_base_url: str = "http://localhost:8000"
    app_name: str = "Guest Pass API"
    debug: bool = False

    # postgres:// and postgresql:// URLs are rewritten to the asyncpg driver
    database_url: str = ""

    # Tokens. SIGNING_KEYS is a JSON map of kid -> secret; only ACTIVE_KID signs,
    # every other kid in the map is verify-only (rotation window).
    token_issuer: str = "guestpass.building"
    signing_keys: Dict[str, str] = {}
    active_kid: str = "k1"

    prereg_token_ttl_hours: int = 24
    verification_token_ttl_hours: int = 48
    session_ttl_hours: int = 12
    door_token_ttl_minutes: int = 15

    # Enhanced QR (wallet) keyed hash
    wallet_secret: str = ""
    wallet_signer_url: str = ""  # external pkpass signing service (optional)
    wallet_signer_api_key: str = ""
    wallet_hash_length: int = 16

    # Building-local calendar used for day-of-visit checks
    building_timezone: str = "America/Los_Angeles"
    building_name: str = "Guest Pass"

    # Stripe Identity
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Twilio SMS
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_api_url: str = "https://api.twilio.com/2010-04-01"

    # Membership API (resident login / membership check)
    membership_api_url: str = ""
    membership_api_key: str = ""

    # Timeouts (seconds)
    store_timeout_seconds: float = 5.0
    identity_timeout_seconds: float = 10.0
    sms_timeout_seconds: float = 10.0
    membership_timeout_seconds: float = 10.0
    wallet_timeout_seconds: float = 15.0

    # Startup
    auto_create_tables: bool = False

    cors_origins: List[str] = [
        *[f"http://localhost:{port}" for port in range(3000, 3007)],
        *[f"http://127.0.0.1:{port}" for port in range(3000, 3007)],
    ]
    secure_cookies: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
