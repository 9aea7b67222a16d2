#!/usr/bin/env python3
"""
Script to verify that the Goal Stack tables exist and migrations are applied
"""
import asyncio
import sys
import platform
from sqlalchemy import inspect, text
from app.core.database import engine

EXPECTED_TABLES = ["users", "goals", "transactions", "internal_transfers"]

async def verify_database():
    """Check tables and migration status"""

    try:
        async with engine.begin() as conn:
            print("🔗 Connected to database successfully!")

            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

            print("\n📋 Expected tables:")
            missing = []
            for table in EXPECTED_TABLES:
                if table in tables:
                    print(f"   ✅ {table}")
                else:
                    print(f"   ❌ {table} (missing)")
                    missing.append(table)

            # Check alembic version
            print("\n🔄 Migration status:")
            if "alembic_version" in tables:
                result = await conn.execute(text("SELECT version_num FROM alembic_version;"))
                version = result.fetchone()
                if version:
                    print(f"   ✅ Current Alembic version: {version[0]}")
                else:
                    print("   ⚠️  No Alembic version found")
            else:
                print("   ⚠️  alembic_version table not found (tables may have been auto-created)")

            print("\n📊 Table statistics:")
            for table in EXPECTED_TABLES:
                if table in tables:
                    result = await conn.execute(text(f"SELECT COUNT(*) FROM {table};"))
                    print(f"   📈 {table}: {result.scalar_one()} rows")

        if missing:
            print(f"\n❌ Missing tables: {', '.join(missing)}")
            sys.exit(1)
        print("\n✅ Database verification completed successfully!")

    finally:
        await engine.dispose()

def main():
    """Main function with proper asyncio handling"""
    if platform.system() == 'Windows':
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

    asyncio.run(verify_database())

if __name__ == "__main__":
    main()
