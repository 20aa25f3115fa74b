"""
config.py
This file contains all the configuration for the application: auth secrets, credit costs,
subscription plans, and the credentials for Stripe, RevenueCat, the app stores, Expo push
and SendGrid.

To change log level, set the LOG_LEVEL environment variable (e.g., LOG_LEVEL=WARNING)
"""

import os
from passlib.context import CryptContext
from dotenv import load_dotenv
import logging

# Load environment variables from .env file first
load_dotenv()

# Centralized logging configuration for production
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

# Debug logging flag - controls whether detailed payment logs are shown
# Set LOGGER_DEBUG=true for testing, false for production
LOGGER_DEBUG = os.getenv("LOGGER_DEBUG", "false").lower() == "true"

def get_logger(name=None):
    """Get a logger with the specified name, using the centralized config."""
    return logging.getLogger(name)

def log_debug(logger, message, *args, **kwargs):
    """
    Conditionally log info messages based on LOGGER_DEBUG flag.
    Use this for detailed debug logs that should only appear when debugging is enabled.
    """
    if LOGGER_DEBUG:
        logger.info(message, *args, **kwargs)

def log_debug_error(logger, message, *args, **kwargs):
    """
    Conditionally log error messages based on LOGGER_DEBUG flag.
    Use this for receipt verification error logs that should only appear when debugging is enabled.
    """
    if LOGGER_DEBUG:
        logger.error(message, *args, **kwargs)

def log_debug_warning(logger, message, *args, **kwargs):
    """
    Conditionally log warning messages based on LOGGER_DEBUG flag.
    Use this for receipt verification warning logs that should only appear when debugging is enabled.
    """
    if LOGGER_DEBUG:
        logger.warning(message, *args, **kwargs)

# **** APP ****
class AppConfig:
    APP_NAME = os.getenv("APP_NAME", "ATC")
    BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
    DEEP_LINK_SCHEME = os.getenv("DEEP_LINK_SCHEME", "atc")
    # Shared secret the cron service sends in X-Cron-Secret (unset = no check)
    CRON_SECRET = os.getenv("CRON_SECRET")
    # Required in X-Admin-Key for admin credit adjustments (unset = endpoint disabled)
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")

# **** USER AUTHENTICATION ****
class UserAuth:
    SECRET_KEY = os.getenv('SECRET_KEY')
    ALGORITHM = os.getenv('ALGORITHM', 'HS256')
    ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 30  # 30 days
    REFRESH_TOKEN_EXPIRE_DAYS = 90  # 90 days
    OTP_EXPIRE_MINUTES = 10
    # password hashing context
    pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# **** CREDITS ****
class Credits:
    FRIEND_REQUEST_COST = 10
    # Charged to the original sender when the request is accepted
    FRIEND_ACCEPT_COST = 10
    BARTER_PROPOSAL_COST = 10
    BARTER_ACCEPT_COST = 10

# **** SUBSCRIPTION PLANS ****
class SubscriptionPlans:
    # Prices in cents
    PLANS = {
        "basic": {
            "name": "Basic",
            "price": 100,
            "credits": 100,
            "interval": "month",
            "description": "100 credits every month",
            "stripe_price_id": os.getenv("STRIPE_BASIC_PRICE_ID"),
        },
        "standard": {
            "name": "Standard",
            "price": 300,
            "credits": 350,
            "interval": "month",
            "description": "350 credits every month",
            "stripe_price_id": os.getenv("STRIPE_STANDARD_PRICE_ID"),
        },
        "premium": {
            "name": "Premium",
            "price": 500,
            "credits": 500,
            "interval": "month",
            "description": "500 credits every month",
            "stripe_price_id": os.getenv("STRIPE_PREMIUM_PRICE_ID"),
        },
    }

    # App Store / Play Store product IDs to plan mapping
    # This ensures clients can't manipulate credit amounts
    PRODUCT_PLAN_MAPPING = {
        "com.booali.Atc.basic": "basic",
        "com.booali.Atc.standard": "standard",
        "com.booali.Atc.premium": "premium",
    }

    @classmethod
    def plan_for_product(cls, product_id):
        """Resolve a store product id (exact, or package identifier containing it) to a plan name."""
        if not product_id:
            return None
        if product_id in cls.PRODUCT_PLAN_MAPPING:
            return cls.PRODUCT_PLAN_MAPPING[product_id]
        for known_product, plan in cls.PRODUCT_PLAN_MAPPING.items():
            if known_product in product_id:
                return plan
        return None

# **** STRIPE CONFIGURATION ****
class StripeConfig:
    SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# **** REVENUECAT CONFIGURATION ****
class RevenueCat:
    API_KEY = os.getenv("REVENUECAT_API_KEY")
    API_URL = "https://api.revenuecat.com/v1"
    PROJECT_ID = os.getenv("REVENUECAT_PROJECT_ID")
    # Value RevenueCat sends in the Authorization header of webhook calls
    WEBHOOK_AUTH = os.getenv("REVENUECAT_WEBHOOK_AUTH")
    # Allow simulator purchases to bypass RevenueCat verification (development/testing only)
    ALLOW_SIMULATOR_BYPASS = os.getenv("REVENUECAT_ALLOW_SIMULATOR_BYPASS", "false").lower() == "true"
    MAX_RETRIES = 3
    INITIAL_RETRY_DELAY = 1.0

# **** APP STORE / PLAY STORE RECEIPTS ****
class AppStore:
    VERIFY_RECEIPT_PRODUCTION = "https://buy.itunes.apple.com/verifyReceipt"
    VERIFY_RECEIPT_SANDBOX = "https://sandbox.itunes.apple.com/verifyReceipt"
    SHARED_SECRET = os.getenv("APPLE_SHARED_SECRET")
    # Status code meaning "this is a sandbox receipt, retry against sandbox"
    SANDBOX_RECEIPT_STATUS = 21007

class GooglePlay:
    API_URL = "https://androidpublisher.googleapis.com/androidpublisher/v3"
    ACCESS_TOKEN = os.getenv("GOOGLE_PLAY_TOKEN")
    PACKAGE_NAME = os.getenv("GOOGLE_PACKAGE_NAME")

# Simulated receipt verification for development/testing
RECEIPT_TEST_MODE = os.getenv("RECEIPT_TEST_MODE", "false").lower() == "true"

# **** PUSH NOTIFICATIONS ****
class PushNotifications:
    EXPO_PUSH_URL = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
    REMINDER_DAYS = (3, 1, 0)
    PREVIEW_LENGTH = 50

# **** EMAIL ****
class EmailConfig:
    SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")
    FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@atc-app.com")
