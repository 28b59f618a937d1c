"""Script to create the first API key with every scope."""

import asyncio
import sys

sys.path.insert(0, ".")

from doctor_media.auth.security import create_api_key
from doctor_media.config import get_settings
from doctor_media.db.session import Database, init_db


async def main():
    settings = get_settings()
    database = Database(settings.database_url).open()
    try:
        print("Initializing database...")
        await init_db(database)

        print("Creating admin API key...")
        async with database.session() as db:
            api_key, full_key = await create_api_key(
                db,
                name="Admin Key",
                owner="admin",
                scopes=["intake", "review", "admin"],
                rate_limit_per_minute=1000,
                rate_limit_per_hour=10000,
            )
            await db.commit()
    finally:
        await database.close()

    print("\n" + "=" * 60)
    print("ADMIN API KEY CREATED")
    print("=" * 60)
    print(f"\nAPI Key: {full_key}")
    print(f"Key ID:  {api_key.id}")
    print(f"Prefix:  {api_key.key_prefix}")
    print("\nSave this key now. It will not be shown again.")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
