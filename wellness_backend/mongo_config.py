import os
import logging
from functools import lru_cache

from django.core.exceptions import ImproperlyConfigured
from dotenv import load_dotenv
from pymongo import MongoClient

load_dotenv()

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client():
    mongo_uri = os.getenv("MONGO_URI")
    if not mongo_uri:
        raise ImproperlyConfigured("MONGO_URI must be set in the environment.")

    # tz_aware so createdAt comparisons happen between aware datetimes
    client = MongoClient(mongo_uri, tz_aware=True)
    logger.info("MongoDB client created.")
    return client


def get_db():
    mongo_db_name = os.getenv("MONGO_DB_NAME")
    if not mongo_db_name:
        raise ImproperlyConfigured("MONGO_DB_NAME must be set in the environment.")
    return get_client()[mongo_db_name]
