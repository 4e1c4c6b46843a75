from pymongo import MongoClient
import logging

from config import config

logger = logging.getLogger(__name__)


class MongoRepositorySingleton:
    _db_instance = None

    @classmethod
    def get_db(cls):
        """Singleton utility to get the MongoDB database object.

        Uses config.MONGO_URI and config.LF_DB_NAME (overridable through the
        MONGO_URI and LF_DB_NAME environment variables). For local development
        these default to mongodb://localhost:27017 and 'lost_found_db'.
        """
        if cls._db_instance is not None:
            return cls._db_instance
        mongo_uri = config.MONGO_URI
        db_name = config.LF_DB_NAME
        logger.info(f"[MongoRepositorySingleton] Connecting to MongoDB DB: {db_name}")
        client = MongoClient(mongo_uri)
        cls._db_instance = client[db_name]
        return cls._db_instance

    @classmethod
    def set_db(cls, db):
        """Install a database object (used by tests and alternative runners)."""
        cls._db_instance = db
