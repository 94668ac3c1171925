# samvaad: Centralize environment-driven configuration constants. Settings from .samvaad/settings.yaml override these per project (see settings.py).

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


# Provider selection ("anthropic" or "openai")
PROVIDER = os.environ.get("SAMVAAD_PROVIDER", "anthropic")

# Anthropic env
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.environ.get("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022")
ANTHROPIC_BASE_URL = os.environ.get("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
ANTHROPIC_VERSION = os.environ.get("ANTHROPIC_VERSION", "2023-06-01")

# OpenAI env
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")

# Per-request timeout for provider HTTP calls
HTTP_TIMEOUT_SEC = int(os.environ.get("SAMVAAD_HTTP_TIMEOUT_SEC", "600"))

# Conversation defaults
MAX_TOKENS = int(os.environ.get("SAMVAAD_MAX_TOKENS", "8192"))
TEMPERATURE = float(os.environ.get("SAMVAAD_TEMPERATURE", "0.2"))
MAX_TURNS = int(os.environ.get("SAMVAAD_MAX_TURNS", "25"))

# Retry policy for speak_with_retry
MAX_SPEAK_RETRIES = int(os.environ.get("SAMVAAD_MAX_SPEAK_RETRIES", "3"))
RETRY_DELAY_SEC = float(os.environ.get("SAMVAAD_RETRY_DELAY_SEC", "1.0"))
# "fixed" keeps the same delay between attempts; "exponential" doubles it per attempt with jitter.
RETRY_BACKOFF = os.environ.get("SAMVAAD_RETRY_BACKOFF", "fixed")

# Request cache (fingerprint -> provider response)
REQUEST_CACHE_EXPIRY_SEC = int(os.environ.get("SAMVAAD_REQUEST_CACHE_EXPIRY_SEC", str(3 * 24 * 60 * 60)))
IGNORE_REQUEST_CACHE = _env_bool("SAMVAAD_IGNORE_REQUEST_CACHE", False)

# Per-project data directory name
DATA_DIR_NAME = os.environ.get("SAMVAAD_DATA_DIR", ".samvaad")

# File listing cap used when building <project-details>
PROJECT_LISTING_MAX_FILES = int(os.environ.get("SAMVAAD_PROJECT_LISTING_MAX_FILES", "2000"))

# Commands run_command may execute
ALLOWED_COMMANDS = [
    c.strip()
    for c in os.environ.get("SAMVAAD_ALLOWED_COMMANDS", "ls,cat,git,grep,pytest,python,npm,make").split(",")
    if c.strip()
]

# Stage and commit patched files when the project is a git repository
AUTO_COMMIT = _env_bool("SAMVAAD_AUTO_COMMIT", True)
