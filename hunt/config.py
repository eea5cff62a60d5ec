from dotenv import load_dotenv
import os

# Load environment variables from a .env file
load_dotenv()

# Retrieve parts of the database URL from environment variables
DB_USER = os.getenv("DB_USERNAME", "root")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_HOST = os.getenv("DB_HOST", "127.0.0.1")
DB_PORT = os.getenv("DB_PORT", "3306")
DB_NAME = os.getenv("DB_NAME", "hunt")

# Token settings
SECRET_KEY = os.getenv("SECRET_KEY", "secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30))

# AWS Configuration
S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME")
AWS_ACCESS_KEY = os.getenv("AWS_ACCESS_KEY")
AWS_SECRET_KEY = os.getenv("AWS_SECRET_KEY")
S3_REGION = os.getenv("S3_REGION")
S3_URL = f"https://{S3_BUCKET_NAME}.s3.{S3_REGION}.amazonaws.com"

# Image analysis service
IMAGE_CHECKER_URL = os.getenv("IMAGE_CHECKER_URL", "http://localhost:8080")
# Where evidence photos live, either a cloud URL or a local directory
IMAGE_BASE_DIR = os.getenv("IMAGE_BASE_DIR", S3_URL)

# Polling of the analysis service: delay = base + attempts * step
VERIFICATION_MAX_ATTEMPTS = int(os.getenv("VERIFICATION_MAX_ATTEMPTS", 30))
VERIFICATION_BASE_DELAY_MS = int(os.getenv("VERIFICATION_BASE_DELAY_MS", 1000))
VERIFICATION_DELAY_STEP_MS = int(os.getenv("VERIFICATION_DELAY_STEP_MS", 100))
VERIFICATION_REQUEST_TIMEOUT = float(os.getenv("VERIFICATION_REQUEST_TIMEOUT", 30))

DEFAULT_RADIUS_METERS = float(os.getenv("DEFAULT_RADIUS_METERS", 50.0))

# Audit writes run on a small worker pool, 0 keeps them inline
AUDIT_WORKERS = int(os.getenv("AUDIT_WORKERS", 2))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Build the database URL
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"mysql+pymysql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
