import os
import logging

logger = logging.getLogger(__name__)


def _canon_prefix(val):
    """
    Normalize API prefix to always be exactly like '/api':
      - defaults to '/api' when unset/empty
      - ensures a single leading slash
      - removes any trailing slash (except for root)
    """
    val = (val or "/api").strip()
    if not val.startswith("/"):
        val = "/" + val
    if len(val) > 1 and val.endswith("/"):
        val = val[:-1]
    return val


def _positive_number(env_var: str, default: float) -> float:
    raw_value = os.getenv(env_var)
    if raw_value is None or not raw_value.strip():
        return default

    try:
        value = float(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid number (got %r); defaulting to %s",
            env_var,
            raw_value,
            default,
        )
        return default

    if value <= 0:
        logger.warning("%s must be positive; defaulting to %s", env_var, default)
        return default

    return value


API_PREFIX = _canon_prefix(os.getenv("API_PREFIX"))

VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY")
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY")
VAPID_SUBJECT = (
    os.getenv("VAPID_SUBJECT")
    or os.getenv("NOTIFICATION_CONTACT_EMAIL")
    or "mailto:admin@example.com"
)

# MVP voting window opened for every newly recorded match.
MVP_VOTING_WINDOW_HOURS = _positive_number("MVP_VOTING_WINDOW_HOURS", 24.0)
# Cadence expected from the external scheduler running the MVP sweep.
MVP_SWEEP_INTERVAL_HOURS = _positive_number("MVP_SWEEP_INTERVAL_HOURS", 3.0)

MIGRATION_BATCH_SIZE = int(_positive_number("MIGRATION_BATCH_SIZE", 400))
