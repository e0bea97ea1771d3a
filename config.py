"""
Runtime settings for the FreshCart API.

Every value can be overridden through the environment.
"""

import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Remote calls fail fast instead of hanging; callers decide whether to retry
DB_TIMEOUT_MS = int(os.getenv("DB_TIMEOUT_MS", 5000))

DEFAULT_DELIVERY_CHARGE = float(os.getenv("DEFAULT_DELIVERY_CHARGE", 40))
EXPECTED_DELIVERY_DAYS = int(os.getenv("EXPECTED_DELIVERY_DAYS", 1))
STOCK_REFRESH_SECONDS = float(os.getenv("STOCK_REFRESH_SECONDS", 30))
REFERRAL_REWARD = float(os.getenv("REFERRAL_REWARD", 50))

# Shared secret for fulfilment staff; status updates are refused while unset
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
