import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/foodorder_db")

# Application Metadata
PROJECT_NAME = "Food Order Service"
VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Outbox Poller Configuration (delivers events/notifications)
POLLING_INTERVAL = int(os.getenv("POLLING_INTERVAL", 1)) # Poller checks for new events every N seconds
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", 5)) # Max retries for an event
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 50)) # How many events to fetch per poll

# Pricing. All amounts are integer minor units (paise for INR).
CURRENCY = os.getenv("CURRENCY", "INR")
DEFAULT_DELIVERY_FEE = int(os.getenv("DEFAULT_DELIVERY_FEE", 2000))
TAX_RATE = os.getenv("TAX_RATE", "0.05")
PLATFORM_FEE_RATE = os.getenv("PLATFORM_FEE_RATE", "0.02")
DEFAULT_PREPARATION_TIME = int(os.getenv("DEFAULT_PREPARATION_TIME", 30)) # minutes

# A refund within this many minor units of the order total counts as a full refund
REFUND_TOLERANCE = int(os.getenv("REFUND_TOLERANCE", 0))

# Payment Gateway (Razorpay compatible)
RAZORPAY_BASE_URL = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "rzp_test_key")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "rzp_test_secret")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "rzp_webhook_secret")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 10))

# Identity (tokens are issued by the auth service, verified here)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-only-change-me-to-a-long-random-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", 60))
