from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from messenger.config import settings
from messenger.models import DOCUMENT_MODELS


class Database:
    client: AsyncIOMotorClient = None
    database = None

db = Database()

async def init_database(url: str = None, name: str = None):
    """Connect to MongoDB and register the beanie documents"""
    db.client = AsyncIOMotorClient(url or settings.MONGODB_URL, tz_aware=True)
    db.database = db.client[name or settings.DATABASE_NAME]

    await init_beanie(
        database=db.database,
        document_models=DOCUMENT_MODELS,
    )

async def close_database():
    """Close database connection"""
    if db.client:
        db.client.close()
        db.client = None
        db.database = None