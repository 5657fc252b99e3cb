from __future__ import annotations

import os
from dataclasses import dataclass

@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # DynamoDB
    applications_table_name: str = os.environ.get("APPLICATIONS_TABLE_NAME", "applications")
    applications_session_index: str = os.environ.get("APPLICATIONS_SESSION_INDEX", "stripe_session_id-index")

    # Document uploads (S3)
    uploads_bucket: str = os.environ.get("UPLOADS_BUCKET", "")
    uploads_public_base_url: str = os.environ.get("UPLOADS_PUBLIC_BASE_URL", "").rstrip("/")
    upload_max_bytes: int = int(os.environ.get("UPLOAD_MAX_BYTES", str(10 * 1024 * 1024)))

    # Stripe
    stripe_secret_key: str = os.environ.get("STRIPE_SECRET_KEY", "")
    stripe_publishable_key: str = os.environ.get("STRIPE_PUBLISHABLE_KEY", "")
    stripe_webhook_secret: str = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    stripe_default_currency: str = os.environ.get("STRIPE_DEFAULT_CURRENCY", "usd").lower()
    stripe_success_url: str = os.environ.get(
        "STRIPE_SUCCESS_URL",
        "https://www.fastidp.com/success?session_id={CHECKOUT_SESSION_ID}",
    )
    stripe_cancel_url: str = os.environ.get("STRIPE_CANCEL_URL", "https://www.fastidp.com/apply?step=3")

    # EasyPost
    easypost_api_key: str = os.environ.get("EASYPOST_API_KEY", "")
    easypost_base_url: str = os.environ.get("EASYPOST_BASE_URL", "https://api.easypost.com/v2").rstrip("/")
    easypost_from_address_id: str = os.environ.get("EASYPOST_FROM_ADDRESS_ID", "")
    default_max_delivery_days: int = int(os.environ.get("DEFAULT_MAX_DELIVERY_DAYS", "5"))

    # Downstream automation (Make.com scenario webhook)
    automation_webhook_url: str = os.environ.get("AUTOMATION_WEBHOOK_URL", "")
    automation_timeout_seconds: int = int(os.environ.get("AUTOMATION_TIMEOUT_SECONDS", "10"))

    # Pricing
    tax_rate: str = os.environ.get("TAX_RATE", "0.0775")
    min_total_cents: int = int(os.environ.get("MIN_TOTAL_CENTS", "50"))
    booklet_fee_cents: int = int(os.environ.get("BOOKLET_FEE_CENTS", "0"))
    unknown_tier_policy: str = os.environ.get("PRICING_UNKNOWN_TIER_POLICY", "zero_fee").lower()

    # Test-only endpoints; never enable in production
    enable_test_endpoints: bool = os.environ.get("ENABLE_TEST_ENDPOINTS", "0") not in ("0", "false", "False")

    cors_allow_origins: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "https://fastidp.com,https://www.fastidp.com,http://localhost:3000",
    )
    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()


S = Settings()
