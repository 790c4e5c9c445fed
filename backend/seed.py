"""
Seed script for the Charity Treasury Ledger.

Creates the default treasury categories (zero balance):
- General
- Feeding
- Zakat
- Education
- Medical
"""

import asyncio
from motor.motor_asyncio import AsyncIOMotorClient

from config import settings, configure_logging
from ledger.errors import DuplicateCategoryError
from ledger.store import MongoLedgerStore
from services import build_services

DEFAULT_CATEGORIES = [
    ("General", "Unrestricted donations"),
    ("Feeding", "Feeding rounds and food distribution"),
    ("Zakat", "Zakat funds, beneficiary payments only"),
    ("Education", "School fees and supplies"),
    ("Medical", "Medical assistance"),
]


async def seed_database():
    """Seed the database with initial data"""

    client = AsyncIOMotorClient(settings.mongo_url)
    services = build_services(MongoLedgerStore(client, client[settings.db_name]))

    print("🌱 Starting database seeding...")

    try:
        # ============================================
        # TREASURY CATEGORIES
        # ============================================
        print("💰 Creating treasury categories...")

        for name, description in DEFAULT_CATEGORIES:
            try:
                category = await services.treasury.create_category(name=name, description=description)
                print(f"   ✅ Category created: {name} ({category['id']})")
            except DuplicateCategoryError:
                print(f"   ⚠️  Category {name} already exists. Skipping...")

        print("\n✨ Database seeding completed successfully!")

    finally:
        client.close()


if __name__ == "__main__":
    configure_logging(settings.log_level)
    asyncio.run(seed_database())
