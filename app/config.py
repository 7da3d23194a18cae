import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./asm_portal.db")

# "development" relaxes render auth, image host checks and error sanitizing
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
IS_DEVELOPMENT = ENVIRONMENT == "development"

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Public URLs
APP_URL = os.getenv("APP_URL", "http://localhost:8000")
PORTAL_URL = os.getenv("PORTAL_URL", "https://portal.aerialshots.media")

# Staff API token (Bearer) for internal/admin endpoints
STAFF_API_TOKEN = os.getenv("STAFF_API_TOKEN")

# Render API
RENDER_API_SECRET = os.getenv("RENDER_API_SECRET")
AGENT_SHARED_SECRET = os.getenv("AGENT_SHARED_SECRET")
# Comma separated extra image hosts allowed in development
DEV_ALLOW_IMAGE_DOMAINS = os.getenv("DEV_ALLOW_IMAGE_DOMAINS", "")
RENDER_FONT_PATH = os.getenv("RENDER_FONT_PATH")

# Cloudflare R2 Configuration
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "asm-media")
R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "https://cdn.aerialshots.media")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Aerial Shots Media <noreply@aerialshots.media>")

# Twilio (platform account, credentials are not per-user here)
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")

# Stripe Connect
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# Cubicasa floor plans
CUBICASA_API_KEY = os.getenv("CUBICASA_API_KEY")
CUBICASA_ENVIRONMENT = os.getenv("CUBICASA_ENVIRONMENT", "production")
CUBICASA_WEBHOOK_SECRET = os.getenv("CUBICASA_WEBHOOK_SECRET", "")

# FoundDR HDR processing (RunPod hosted)
FOUNDDR_API_URL = os.getenv("FOUNDDR_API_URL", "https://api.runpod.ai/v2/founddr")
FOUNDDR_API_KEY = os.getenv("FOUNDDR_API_KEY")
FOUNDDR_WEBHOOK_SECRET = os.getenv("FOUNDDR_WEBHOOK_SECRET", "")

# Aloft drone airspace
ALOFT_API_KEY = os.getenv("ALOFT_API_KEY")

# Slack
SLACK_BOT_TOKEN = os.getenv("SLACK_BOT_TOKEN")
SLACK_SIGNING_SECRET = os.getenv("SLACK_SIGNING_SECRET")
SLACK_DEFAULT_CHANNEL = os.getenv("SLACK_DEFAULT_CHANNEL", "#ops")

# Bannerbear social images
BANNERBEAR_API_KEY = os.getenv("BANNERBEAR_API_KEY")
# Bearer token Bannerbear sends with render callbacks
BANNERBEAR_WEBHOOK_SECRET = os.getenv("BANNERBEAR_WEBHOOK_SECRET", "")

# Anthropic (AI content generation)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest")

# Encryption key for stored MLS credentials
# (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
CREDENTIALS_ENCRYPTION_KEY = os.getenv("CREDENTIALS_ENCRYPTION_KEY")

# CORS
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")
