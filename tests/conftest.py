import os
import tempfile

# Settings are read at import time, so the environment is fixed before the app is imported
_TEST_DB_DIR = tempfile.mkdtemp(prefix="goal_stack_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["SOLANA_NETWORK"] = "devnet"
os.environ["SUBMIT_MAX_RETRIES"] = "1"
os.environ["SUBMIT_RETRY_DELAY_SECONDS"] = "0"
os.environ["CONFIRM_TIMEOUT_SECONDS"] = "0.2"
os.environ["CONFIRM_POLL_INTERVAL_SECONDS"] = "0"
os.environ["SWAP_STRATEGY"] = "direct"

import httpx
import pytest
import pytest_asyncio
from solders.keypair import Keypair

from app.core.database import AsyncSessionLocal, Base, engine
from app.models import goal, internal_transfer, transaction  # noqa: F401
from app.utils.slippage import SlippageLadder
from app.utils.submission import TransactionSubmitter
from tests.mocks.clients import FakeJupiter, FakeSolana
from tests.mocks.factories import make_goal, make_user


@pytest_asyncio.fixture
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Pooled aiosqlite connections are bound to this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def solana():
    return FakeSolana()


@pytest.fixture
def jupiter(solana):
    return FakeJupiter(solana)


@pytest.fixture
def submitter(solana):
    return TransactionSubmitter(solana, max_retries=1, retry_delay=0, confirm_timeout=0.2, poll_interval=0)


@pytest.fixture
def ladder():
    return SlippageLadder([50, 100, 150, 200], 200)


@pytest.fixture
def wallet():
    return Keypair()


@pytest_asyncio.fixture
async def user(db_session, wallet):
    return await make_user(db_session, "saver@example.com", wallet_address=str(wallet.pubkey()))


@pytest_asyncio.fixture
async def admin(db_session):
    return await make_user(db_session, "admin@example.com", is_superuser=True)


@pytest_asyncio.fixture
async def btc_goal(db_session, user):
    return await make_goal(db_session, user)


@pytest_asyncio.fixture
async def client(database, solana, jupiter):
    from app.main import app

    app.state.solana = solana
    app.state.jupiter = jupiter
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client


