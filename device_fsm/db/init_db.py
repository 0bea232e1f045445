"""
Initialize database tables
Run this once to create tables
"""

import asyncio

from device_fsm.db.database import init_db


if __name__ == "__main__":
    print("Creating database tables...")
    asyncio.run(init_db())
    print("✅ Database tables created")
