# civichub/services/db.py
import logging
from typing import Optional
from pymongo import AsyncMongoClient
from beanie import init_beanie

from civichub.configs import env, configs
from civichub.models.content import CONTENT_MODELS
from civichub.models.hierarchy import HIERARCHY_DOCUMENT_MODELS
from civichub.models.user import User

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [*HIERARCHY_DOCUMENT_MODELS, User, *CONTENT_MODELS.values()]

# Shared client; transactions (bulk creates) need direct access to it.
db_client: Optional[AsyncMongoClient] = None


async def get_database_client(uri: Optional[str] = None) -> AsyncMongoClient:
    """Returns the MongoDB async client, creating it on first use."""
    global db_client
    if db_client is None:
        db_client = AsyncMongoClient(uri or env.get("MONGO_URI"))
    return db_client


async def init_database(
    uri: Optional[str] = None, database_name: Optional[str] = None
) -> AsyncMongoClient:
    """
    Connects to MongoDB and initializes Beanie with every document model.
    Meant to be awaited once from the hosting application's startup hook.
    """
    database_name = (
        database_name
        or env.get("MONGO_DB")
        or (configs.get("database") or {}).get("name")
    )
    try:
        client = await get_database_client(uri)
        await init_beanie(database=client[database_name], document_models=DOCUMENT_MODELS)
        logger.info(f"MongoDB connection and Beanie initialization successful ({database_name}).")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB or initialize Beanie: {e}")
        raise
    return client


async def close_database() -> None:
    global db_client
    if db_client is not None:
        await db_client.close()
        db_client = None
        logger.info("MongoDB connection closed.")
