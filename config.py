import os

from starlette.config import Config
from starlette.datastructures import CommaSeparatedStrings, Secret

# If APP_CONFIG is set, use that as the path to the .env file, or default to .env
env_file = os.getenv("APP_CONFIG", ".env")
if "APP_CONFIG" in os.environ and not os.path.isfile(env_file):
    raise FileNotFoundError(f"The configuration file specified in APP_CONFIG or the default .env does not exist: {env_file}")

config = Config(env_file)

# JWT Configuration
JWT_SECRET_KEY: Secret = config("JWT_SECRET_KEY", cast=Secret)
JWT_ALGORITHM: str = config("JWT_ALGORITHM", default="HS256")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = config(
    "JWT_ACCESS_TOKEN_EXPIRE_MINUTES", cast=int, default=7 * 24 * 60
)
JWT_ISSUER: str = config("JWT_ISSUER", default="maapaap-api")
JWT_AUDIENCE: str = config("JWT_AUDIENCE", default="maapaap-web")

# Session Configuration
SESSION_LIFETIME_DAYS: int = config("SESSION_LIFETIME_DAYS", cast=int, default=7)

# Application Configuration
API_VERSION: str = config("API_VERSION", default="v1")
CORS_ORIGINS: CommaSeparatedStrings = config(
    "CORS_ORIGINS",
    cast=CommaSeparatedStrings,
    default=CommaSeparatedStrings(["http://localhost:3000"]),
)
DEBUG: bool = config("DEBUG", cast=bool, default=False)

# OTP Configuration
OTP_CHARACTER_LENGTH: int = config("OTP_CHARACTER_LENGTH", cast=int, default=6)
OTP_LIFETIME_MINUTES: int = config("OTP_LIFETIME_MINUTES", cast=int, default=10)
OTP_DELIVERY: str = config("OTP_DELIVERY", default="log")  # "log" or "aws"
# Newest unused codes checked per verification; older outstanding codes are ignored
OTP_MAX_OUTSTANDING: int = config("OTP_MAX_OUTSTANDING", cast=int, default=5)

# AWS Configuration (OTP_DELIVERY=aws)
AWS_REGION: str = config("AWS_REGION", default="us-east-2")
AWS_ACCESS_KEY: Secret = config("AWS_ACCESS_KEY", cast=Secret, default="")
AWS_SECRET_ACCESS_KEY: Secret = config("AWS_SECRET_ACCESS_KEY", cast=Secret, default="")
AWS_SES_SENDER_EMAIL: str = config("AWS_SES_SENDER_EMAIL", default="no-reply@maapaap.app")

# Database Configuration
DATABASE_URL: str = config("DATABASE_URL", default="sqlite:///./maapaap.db")
DATABASE_POOL_TIMEOUT_SECONDS: int = config(
    "DATABASE_POOL_TIMEOUT_SECONDS", cast=int, default=2
)

# Redis Configuration. An empty URL falls back to an in-process cache.
REDIS_URL: str = config("REDIS_URL", default="")
REDIS_SOCKET_TIMEOUT_SECONDS: float = config(
    "REDIS_SOCKET_TIMEOUT_SECONDS", cast=float, default=0.5
)

# Cron Job Configuration
EXPIRED_OTP_CLEANUP_INTERVAL_SECONDS: int = config(
    "EXPIRED_OTP_CLEANUP_INTERVAL_SECONDS", cast=int, default=60
)
