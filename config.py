import os

APP_NAME = "Community Issue Reporting API"

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./community_issues.db")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALG = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", 60 * 24 * 14))  # 14 days

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# Fixed recipient for "new report" and "admin request" notifications
REVIEWER_USER_ID = int(os.getenv("REVIEWER_USER_ID", 1))
ADMIN_VERIFICATION_MIN_LENGTH = int(os.getenv("ADMIN_VERIFICATION_MIN_LENGTH", 50))

STREAM_POLL_INTERVAL = float(os.getenv("STREAM_POLL_INTERVAL", 3))
STREAM_BATCH_SIZE = int(os.getenv("STREAM_BATCH_SIZE", 50))

CLIENT_POLL_INTERVAL = float(os.getenv("CLIENT_POLL_INTERVAL", 30))
CLIENT_RECONNECT_DELAY = float(os.getenv("CLIENT_RECONNECT_DELAY", 5))
CLIENT_TIMEOUT = float(os.getenv("CLIENT_TIMEOUT", 15))

SEED_SAMPLE_DATA = os.getenv("SEED_SAMPLE_DATA", "0").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
