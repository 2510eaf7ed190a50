"""Sync PyMongo client for worker tasks that do not need the event loop."""

from __future__ import annotations

from functools import lru_cache

from pymongo import MongoClient

from lhamascred.core.config import get_settings


@lru_cache
def get_pymongo_db():
    settings = get_settings()
    client = MongoClient(settings.MONGO_URI.strip())
    return client[settings.MONGO_DB_NAME.strip()]
