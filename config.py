import os
import sys

# ====================================================================================
# ENVIRONMENT CONFIGURATION: PROD / STAGE / LOCAL isolation via prefixes
# ====================================================================================
# Every setting is read with the environment prefix:
#   - PROD:  PROD_DATABASE_URL, PROD_WEBHOOK_SECRET, ...
#   - STAGE: STAGE_DATABASE_URL, STAGE_WEBHOOK_SECRET, ...
#   - LOCAL: LOCAL_DATABASE_URL, LOCAL_WEBHOOK_SECRET, ...
#
# A STAGE deployment therefore can never pick up a PROD secret by accident.
# ====================================================================================

APP_ENV = os.getenv("APP_ENV", "prod").lower()
if APP_ENV not in ("prod", "stage", "local"):
    print(f"ERROR: Invalid APP_ENV={APP_ENV}. Must be one of: prod, stage, local", file=sys.stderr)
    sys.exit(1)

IS_LOCAL = APP_ENV == "local"
IS_STAGE = APP_ENV == "stage"
IS_PROD = APP_ENV == "prod"


def env(key: str, default: str = "") -> str:
    """
    Read an environment variable with the environment prefix.

    Args:
        key: Variable name without prefix (e.g. "DATABASE_URL")
        default: Value returned when the variable is not set

    Returns:
        Value of "<APP_ENV>_<key>" (e.g. "STAGE_DATABASE_URL")
    """
    env_key = f"{APP_ENV.upper()}_{key}"
    return os.getenv(env_key, default)


def env_bool(key: str, default: bool = False) -> bool:
    raw = env(key, default="true" if default else "false")
    return raw.strip().lower() in ("1", "true", "yes", "on")


def env_int(key: str, default: int) -> int:
    raw = env(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"WARNING: {APP_ENV.upper()}_{key}={raw!r} is not an integer, using {default}", file=sys.stderr)
        return default


def env_float(key: str, default: float) -> float:
    raw = env(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        print(f"WARNING: {APP_ENV.upper()}_{key}={raw!r} is not a number, using {default}", file=sys.stderr)
        return default


# ====================================================================================
# SECRETS
# ====================================================================================
# Secrets are validated at startup (validate_required_config) and never logged.
# Required: DATABASE_URL
# Optional: WEBHOOK_SECRET (signature checks disabled when unset),
#           TELEGRAM_BOT_TOKEN, EMAIL_API_KEY
# ====================================================================================

DATABASE_URL = env("DATABASE_URL")

# Shared secret for HMAC-SHA256 webhook signatures
WEBHOOK_SECRET = env("WEBHOOK_SECRET")

# ====================================================================================
# NOTIFICATION CHANNELS
# ====================================================================================

TELEGRAM_BOT_TOKEN = env("TELEGRAM_BOT_TOKEN")
TELEGRAM_DEFAULT_CHAT_ID = env("TELEGRAM_DEFAULT_CHAT_ID") or None
TELEGRAM_ENABLED = env_bool("TELEGRAM_ENABLED", default=bool(TELEGRAM_BOT_TOKEN))

EMAIL_API_KEY = env("EMAIL_API_KEY")
EMAIL_FROM = env("EMAIL_FROM")
EMAIL_FROM_NAME = env("EMAIL_FROM_NAME", default="SaaS App")
EMAIL_PROVIDER = env("EMAIL_PROVIDER", default="resend").lower()
EMAIL_API_ENDPOINT = env("EMAIL_API_ENDPOINT") or None
EMAIL_ENABLED = env_bool("EMAIL_ENABLED", default=bool(EMAIL_API_KEY and EMAIL_FROM))

# Retry policy for outbound notifications
NOTIFY_MAX_RETRIES = env_int("NOTIFY_MAX_RETRIES", 3)
NOTIFY_INITIAL_DELAY_MS = env_int("NOTIFY_INITIAL_DELAY_MS", 1000)
NOTIFY_MAX_DELAY_MS = env_int("NOTIFY_MAX_DELAY_MS", 30000)
NOTIFY_BACKOFF_MULTIPLIER = env_float("NOTIFY_BACKOFF_MULTIPLIER", 2.0)

# ====================================================================================
# RUNTIME
# ====================================================================================

HTTP_PORT = int(os.getenv("PORT") or env("HTTP_PORT") or "8080")
LOG_LEVEL = env("LOG_LEVEL", default="INFO").upper()

# Interval of the background subscription expiry sweep (seconds, 60..3600)
EXPIRY_SWEEP_INTERVAL_SECONDS = max(60, min(3600, env_int("EXPIRY_SWEEP_INTERVAL_SECONDS", 300)))


def validate_required_config() -> bool:
    """
    Check required settings at process startup.

    PROD refuses to start without DATABASE_URL. STAGE/LOCAL continue in
    degraded mode with a warning.

    Returns:
        True if every required setting is present
    """
    ok = True
    if not DATABASE_URL:
        ok = False
        if IS_PROD:
            print(f"ERROR: {APP_ENV.upper()}_DATABASE_URL is REQUIRED in PROD!", file=sys.stderr)
            sys.exit(1)
        print(f"WARNING: {APP_ENV.upper()}_DATABASE_URL is not set - running in degraded mode", file=sys.stderr)

    if not WEBHOOK_SECRET:
        print(
            f"WARNING: {APP_ENV.upper()}_WEBHOOK_SECRET is not set - webhook signatures will NOT be verified",
            file=sys.stderr,
        )

    if TELEGRAM_ENABLED and not TELEGRAM_BOT_TOKEN:
        print(f"WARNING: Telegram channel enabled but {APP_ENV.upper()}_TELEGRAM_BOT_TOKEN is not set", file=sys.stderr)

    if EMAIL_ENABLED and not (EMAIL_API_KEY and EMAIL_FROM):
        print(f"WARNING: Email channel enabled but {APP_ENV.upper()}_EMAIL_API_KEY/EMAIL_FROM is not set", file=sys.stderr)

    print(f"INFO: Config loaded for environment: {APP_ENV.upper()}", flush=True)
    return ok
