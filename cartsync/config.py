"""Runtime configuration read from environment variables."""
import os
from decimal import Decimal

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Redis cart storage
REDIS_URL = os.environ.get("REDIS_URL", "")
CART_KEY_PREFIX = os.environ.get("CART_KEY_PREFIX", "cart:")

# Guest carts expire, user carts persist indefinitely
GUEST_CART_TTL = int(os.environ.get("GUEST_CART_TTL", str(30 * 24 * 60 * 60)))  # 30 days
ABANDONED_CART_AGE = int(os.environ.get("ABANDONED_CART_AGE", str(7 * 24 * 60 * 60)))  # 7 days

# Merge trigger: attempts of the read-merge-write sequence before FAILED
MERGE_MAX_ATTEMPTS = int(os.environ.get("MERGE_MAX_ATTEMPTS", "3"))

# Merge trigger: recent MERGED outcomes kept per process
MERGE_OUTCOME_CACHE_SIZE = int(os.environ.get("MERGE_OUTCOME_CACHE_SIZE", "1024"))

# Cart manager: attempts of a read-modify-write on Conflict
WRITE_MAX_ATTEMPTS = int(os.environ.get("WRITE_MAX_ATTEMPTS", "3"))

# Relative price delta above which a line item needs re-confirmation
PRICE_CHANGE_TOLERANCE = Decimal(os.environ.get("PRICE_CHANGE_TOLERANCE", "0.10"))

# Inventory service
INVENTORY_API_URL = os.environ.get("INVENTORY_API_URL", "")
INVENTORY_API_TOKEN = os.environ.get("INVENTORY_API_TOKEN", "")
INVENTORY_TIMEOUT = float(os.environ.get("INVENTORY_TIMEOUT", "5.0"))

# Cron
CRON_SECRET = os.environ.get("CRON_SECRET", "")
