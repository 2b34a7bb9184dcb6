"""Shared defaults for levelforge."""

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///levelforge.db"

DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_STALE_THRESHOLD_MS = 300_000
DEFAULT_PROVIDER_TIMEOUT_S = 60.0

SECRETS_MASTER_KEY_ENV = "SECRETS_MASTER_KEY"
SECRET_ALGORITHM = "AES-256-GCM"

# Credentials the vault is allowed to hold.
KNOWN_SECRETS = (
    # AI providers
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "FAL_API_KEY",
    "MESHY_API_KEY",
    "RODIN_API_KEY",
    # Object storage
    "CF_R2_ACCOUNT_ID",
    "CF_R2_ACCESS_KEY_ID",
    "CF_R2_SECRET_ACCESS_KEY",
    "CF_R2_BUCKET_NAME",
    "CF_R2_ENDPOINT",
    "CF_R2_PUBLIC_BASE_URL",
    # Hosting
    "RENDER_DEPLOY_HOOK_URL",
    "RENDER_API_KEY",
)

BREAKPOINT_REASON = "breakpoint_after"
