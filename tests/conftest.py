"""
Pytest configuration and fixtures.
"""

import sys
import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

from cryptography.fernet import Fernet

# Settings are read at import time
os.environ["DATABASE_URL"] = ""
os.environ["APP_ENV"] = "development"
os.environ["SUPABASE_URL"] = "https://project.example.co"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["TOKEN_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["MP_CLIENT_ID"] = "test-client-id"
os.environ["MP_CLIENT_SECRET"] = "test-client-secret"
os.environ["MP_WEBHOOK_SECRET"] = ""

import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Add app to path
sys.path.append(os.getcwd())

import app.models  # noqa: F401
from app.config import settings
from app.database import Base
from app.models.catalog import Product, Service
from app.models.seller import Seller
from app.models.user import Profile
from app.services.credential_vault import CredentialVault
from app.services.mercadopago_client import MercadoPagoClient

# Use in-memory SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite://"

SELLER_ACCESS_TOKEN = "APP_USR-seller-access-token"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


class FakeRedis:
    """In-memory stand-in for the few Redis commands the webhook uses."""

    def __init__(self):
        self.store = {}

    async def exists(self, key: str) -> int:
        return 1 if key in self.store else 0

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        return True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def processor() -> AsyncMock:
    """Processor client with every call mocked."""
    mock = AsyncMock(spec=MercadoPagoClient)
    mock.client_credentials_token.return_value = "APP_USR-platform-token"
    mock.create_preference.return_value = {
        "id": "123456789-pref-0001",
        "init_point": "https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=123456789-pref-0001",
    }
    return mock


def make_token(user_id: uuid.UUID, email: Optional[str] = "cliente@example.com", **claims) -> str:
    """Session JWT as issued by the hosting backend."""
    payload = {
        "sub": str(user_id),
        "aud": settings.supabase_jwt_audience,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        "email": email,
    }
    payload.update(claims)
    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")


async def create_profile(db: AsyncSession, full_name: str = "Cliente Teste", **kwargs) -> Profile:
    profile = Profile(
        user_id=kwargs.pop("user_id", uuid.uuid4()),
        full_name=full_name,
        email=kwargs.pop("email", "cliente@example.com"),
        **kwargs,
    )
    db.add(profile)
    await db.flush()
    return profile


async def create_seller(db: AsyncSession, connected: bool = True, mp_user_id: str = "987654") -> Seller:
    owner = await create_profile(db, full_name="Barbearia do Zé", email="ze@example.com")
    seller = Seller(user_id=owner.user_id, profile_id=owner.id, business_name="Barbearia do Zé")
    db.add(seller)
    await db.flush()

    if connected:
        await CredentialVault(db).put(
            seller_id=seller.id,
            access_token=SELLER_ACCESS_TOKEN,
            refresh_token="TG-seller-refresh-token",
            mp_user_id=mp_user_id,
            expires_in=15552000,
        )
    return seller


async def create_service(
    db: AsyncSession,
    seller: Optional[Seller],
    price: str = "50.00",
    name: str = "Corte",
    is_active: bool = True,
) -> Service:
    service = Service(
        seller_id=seller.id if seller else None,
        name=name,
        price=Decimal(price),
        duration_minutes=30,
        is_active=is_active,
    )
    db.add(service)
    await db.flush()
    return service


async def create_product(
    db: AsyncSession,
    seller: Seller,
    price: str = "50.00",
    stock: int = 10,
    name: str = "Pomada Modeladora",
) -> Product:
    product = Product(
        seller_id=seller.id,
        name=name,
        price=Decimal(price),
        stock_quantity=stock,
    )
    db.add(product)
    await db.flush()
    return product
