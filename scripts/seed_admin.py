"""
Create (or promote) the first administrator account.

Signups start as `pending` and need an admin to approve them, so a fresh
database needs one admin created out of band.

Run: python -m scripts.seed_admin admin@example.com 'password' 'Admin Name'
"""

import asyncio
import os
import sys
from datetime import datetime

import certifi
from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient
from passlib.context import CryptContext

load_dotenv()

MONGO_URL = os.getenv("MONGO_URI", "mongodb://localhost:27017")
DB_NAME = os.getenv("MONGO_DB_NAME", "lhamascred")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_client(uri: str) -> AsyncIOMotorClient:
    client_kwargs = {}
    if "mongodb+srv://" in uri or "ssl=true" in uri.lower():
        client_kwargs["tlsCAFile"] = certifi.where()
    return AsyncIOMotorClient(uri, **client_kwargs)


async def seed_admin(email: str, password: str, name: str):
    client = get_client(MONGO_URL)
    users = client[DB_NAME]["users"]
    print(f"Connected to MongoDB: {MONGO_URL}/{DB_NAME}")

    email = email.strip().lower()
    now = datetime.utcnow()
    existing = await users.find_one({"email": email})
    if existing:
        await users.update_one(
            {"_id": existing["_id"]},
            {"$set": {"role": "admin", "status": "active", "updated_at": now}},
        )
        print(f"Promoted existing user {email} to active admin")
    else:
        await users.insert_one({
            "email": email,
            "password_hash": pwd_context.hash(password),
            "name": name,
            "role": "admin",
            "status": "active",
            "team_id": None,
            "credentials": {},
            "created_at": now,
        })
        print(f"Created admin {email}")

    await users.create_index("email", unique=True)
    client.close()


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python -m scripts.seed_admin <email> <password> [name]")
        sys.exit(1)
    asyncio.run(seed_admin(sys.argv[1], sys.argv[2], sys.argv[3] if len(sys.argv) > 3 else "Administrator"))
