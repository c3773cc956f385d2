"""
Vercel entry point for the Sentinel Marketplace API
"""
import sys
import os

# Add parent directory to path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("MARKETPLACE_CONFIG_PATH", "/tmp/marketplace_config.yaml")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:////tmp/sentinel.db")
os.environ.setdefault("CHECK_INTERVAL_SECONDS", "0")  # Disable scheduler in serverless
os.environ.setdefault("BILLING_INTERVAL_SECONDS", "0")

from mangum import Mangum
from src.main import app

# Lambda handler for ASGI app; lifespan runs once per cold start
handler = Mangum(app, lifespan="auto")
