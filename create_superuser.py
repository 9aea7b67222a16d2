#!/usr/bin/env python3
"""
Standalone script to create an admin user for the Goal Stack API
and print a bearer token for it.
Usage: python create_superuser.py
"""

import asyncio
from app.core.database import AsyncSessionLocal, engine
from app.core.auth import User, create_access_token
from app.crud.user import get_user_by_email
from app.core.solana import is_valid_solana_address
from app.models import goal, internal_transfer, transaction  # noqa: F401

async def create_superuser():
    print("Creating admin user...")

    email = input("Enter admin email: ") or "admin@example.com"
    full_name = input("Enter full name (optional): ") or "System Administrator"
    wallet = input("Enter wallet address (optional): ").strip() or None

    if wallet and not is_valid_solana_address(wallet):
        print(f"❌ {wallet} is not a valid Solana address")
        return

    async with AsyncSessionLocal() as session:
        try:
            user = await get_user_by_email(email, session)
            if user:
                print(f"User with email {email} already exists, promoting to admin")
                user.is_superuser = True
            else:
                user = User(
                    email=email,
                    full_name=full_name,
                    wallet_address=wallet,
                    is_superuser=True,
                )
                session.add(user)
            await session.commit()
            await session.refresh(user)

            print(f"✅ Admin ready!")
            print(f"📧 Email: {user.email}")
            print(f"🔑 ID: {user.id}")
            print(f"🎟️  Token: {create_access_token(str(user.id))}")
        except Exception as e:
            await session.rollback()
            print(f"❌ Error creating admin user: {e}")
            raise
        finally:
            await engine.dispose()

if __name__ == "__main__":
    asyncio.run(create_superuser())
