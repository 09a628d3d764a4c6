from collections.abc import Callable
from typing import Any

import pytest
from httpx import ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardtrack.api.auth import StaticTokenVerifier, get_token_verifier
from cardtrack.db.database import get_session
from cardtrack.main import app
from cardtrack.models.db import Base

# Bearer tokens accepted by the test app, and the owners they resolve to.
TEST_TOKENS = {"token-ash": "ash", "token-misty": "misty"}


def make_card_entry(card_id: str = "pikachu-25", **overrides: Any) -> dict[str, Any]:
    """Build a card payload as a client would send it."""
    base, _, number = card_id.rpartition("-")
    entry: dict[str, Any] = {
        "card_id": card_id,
        "name": base.capitalize() or card_id,
        "set_id": "base1",
        "set_name": "Base",
        "number": number or "1",
        "rarity": "Common",
        "image_small": f"https://images.pokemontcg.io/base1/{number or '1'}.png",
        "image_large": f"https://images.pokemontcg.io/base1/{number or '1'}_hires.png",
        "quantity": 1,
    }
    entry.update(overrides)
    return entry


@pytest.fixture
def card_entry() -> Callable[..., dict[str, Any]]:
    """Factory for client card payloads."""
    return make_card_entry


@pytest.fixture
async def server_engine():
    """In-memory SQLite engine standing in for the authoritative store."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def app_transport(server_engine):
    """ASGI transport for the app, backed by the in-memory store."""
    async_session = async_sessionmaker(server_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_session():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_token_verifier] = lambda: StaticTokenVerifier(TEST_TOKENS)

    yield ASGITransport(app=app)

    app.dependency_overrides.clear()
