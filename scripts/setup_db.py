"""
scripts/setup_db.py — Initialize the database schema.

Run once before starting the application for the first time:
    python scripts/setup_db.py

Creates every table in app/db/models.py (topics, rules, services,
pipeline_runs) directly from SQLAlchemy metadata.
"""

import sys
import os

# Ensure the project root is on the path so we can import `app`
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import inspect, text

from app.db.session import get_engine, is_database_configured
from app.db.models import Base
from app.config import settings


def setup_db() -> None:
    if not is_database_configured():
        print("❌ DATABASE_URL is not set. Add it to .env and retry.")
        sys.exit(1)

    print("🔌 Connecting to database...")
    print(f"   URL: {settings.database_url[:40]}...")

    engine = get_engine()
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    print("✅ Connection successful.")

    print("\n📦 Creating tables if they don't exist...")
    Base.metadata.create_all(bind=engine)

    tables = inspect(engine).get_table_names()
    print(f"✅ Tables in database: {tables}")

    print("\n🎉 Database setup complete!")


if __name__ == "__main__":
    setup_db()
