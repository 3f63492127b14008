import os

# must run before any project module reads config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["REVIEWER_USER_ID"] = "1"
os.environ["STREAM_POLL_INTERVAL"] = "0"
os.environ.setdefault("LOG_LEVEL", "WARNING")
