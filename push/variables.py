import os

from dotenv import load_dotenv

load_dotenv()

APP_NAME = "ELP Green Technology"

DEFAULT_TOPIC = "general"
ALL_TOPIC = "all"
DEFAULT_TOPICS = frozenset({DEFAULT_TOPIC})
DEFAULT_LOCALE = "pt"

DEFAULT_ICON = "/pwa-192x192.png"
DEFAULT_BADGE = "/pwa-192x192.png"
DEFAULT_URL = "/"
DEFAULT_BODY = "Nova atualização disponível"

NOTIFICATION_TAG = "elp-notification"
VIBRATE_PATTERN = (100, 50, 100)

ACTION_OPEN = "open"
ACTION_DISMISS = "dismiss"

TOKEN_TTL = 12 * 60 * 60

PRIVILEGED_ROLES = frozenset({"admin"})

# statuses a push service uses for an unsubscribed or expired endpoint
GONE_STATUSES = frozenset({404, 410})


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY")
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY")
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:contato@elpgreen.com")
VAPID_KEY_URL = os.getenv("VAPID_KEY_URL")

NOTIFY_PASS = os.getenv("NOTIFY_PASS")
BROADCAST_TOKENS = os.getenv("BROADCAST_TOKENS", "")

REDIS_URL = os.getenv("REDIS_URL")

PUSH_CONCURRENCY = _env_int("PUSH_CONCURRENCY", 10)
PUSH_TTL = _env_int("PUSH_TTL", 86400)
PUSH_TIMEOUT = _env_int("PUSH_TIMEOUT", 10)
PUSH_PRUNE_ALL_FAILURES = _env_bool("PUSH_PRUNE_ALL_FAILURES")

OFFLINE = _env_bool("OFFLINE")

SERVER_URL = os.getenv("SERVER_URL", "http://localhost:8000")
