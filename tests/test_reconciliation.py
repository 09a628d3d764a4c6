"""Tests for batch reconciliation of client writes."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardtrack.db.operations import (
    add_or_merge_card,
    compare_and_swap_card,
    get_collection_card,
    list_all_collection_cards,
    update_collection_card,
)
from cardtrack.models.collection import as_utc, utc_now
from cardtrack.models.db import Base, CollectionCardDB
from cardtrack.models.sync import CollectionCardPayload
from cardtrack.services import reconciliation
from cardtrack.services.reconciliation import Decision, decide, reconcile_batch


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def session(async_engine) -> AsyncSession:
    """Provide a database session for tests."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest.fixture
def seed(session: AsyncSession, card_entry):
    """Store a row for an owner with a chosen last-modified time."""

    async def create(updated_at, user_id: str = "ash", **overrides) -> CollectionCardDB:
        card = CollectionCardPayload.model_validate(card_entry(**overrides))
        row, _ = await add_or_merge_card(session, user_id, card)
        row.updated_at = updated_at
        await session.commit()
        return row

    return create


class TestInsert:
    async def test_inserts_unowned_card(self, session: AsyncSession, card_entry) -> None:
        """An entry for an unowned card is inserted."""
        result = await reconcile_batch(session, "ash", [card_entry(quantity=3)])
        await session.commit()

        assert result.inserted == 1
        assert result.updated == 0
        assert result.conflicts == []

        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.quantity == 3

    async def test_inserts_each_card_once(self, session: AsyncSession, card_entry) -> None:
        """A batch of new cards produces one row each."""
        entries = [card_entry("pikachu-25"), card_entry("charizard-4"), card_entry("mew-151")]

        result = await reconcile_batch(session, "ash", entries)

        assert result.inserted == 3
        assert len(await list_all_collection_cards(session, "ash")) == 3

    async def test_insert_race_is_decided_against_winner(
        self, session: AsyncSession, card_entry, seed, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An insert beaten by another insert is re-decided against the stored row."""
        await seed(utc_now() - timedelta(hours=1))
        real_get = reconciliation.get_collection_card
        reads: list[str] = []

        async def stale_first_read(session, user_id, card_id):
            reads.append(card_id)
            if len(reads) == 1:
                return None
            return await real_get(session, user_id, card_id)

        monkeypatch.setattr(reconciliation, "get_collection_card", stale_first_read)
        entry = card_entry(quantity=2, updated_at=(utc_now() - timedelta(minutes=30)).isoformat())

        result = await reconcile_batch(session, "ash", [entry])

        assert result.inserted == 0
        assert result.updated == 1
        assert len(reads) == 2
        rows = await list_all_collection_cards(session, "ash")
        assert len(rows) == 1
        assert rows[0].quantity == 2


class TestLastWriterWins:
    async def test_client_newer_overwrites_row(
        self, session: AsyncSession, card_entry, seed
    ) -> None:
        """A newer client write replaces the row and takes server time."""
        await seed(utc_now() - timedelta(hours=1), quantity=1)
        client_time = utc_now() - timedelta(minutes=30)
        entry = card_entry(quantity=2, purchase_price=4.5, updated_at=client_time.isoformat())
        before = utc_now()

        result = await reconcile_batch(session, "ash", [entry])
        await session.commit()

        assert result.updated == 1
        assert result.conflicts == []

        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.quantity == 2
        assert row.purchase_price == 4.5
        assert row.version == 2
        assert as_utc(row.updated_at) >= before
        assert as_utc(row.updated_at) > client_time

    async def test_server_newer_reports_conflict(
        self, session: AsyncSession, card_entry, seed
    ) -> None:
        """An older client write is rejected with both versions."""
        server_time = utc_now() - timedelta(hours=1)
        await seed(server_time, quantity=1, purchase_price=7.5)
        entry = card_entry(
            quantity=1,
            purchase_price=5.0,
            updated_at=(server_time - timedelta(hours=1)).isoformat(),
        )

        result = await reconcile_batch(session, "ash", [entry])

        assert result.updated == 0
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.card_id == "pikachu-25"
        assert conflict.server_version.purchase_price == 7.5
        assert conflict.server_version.updated_at == server_time
        assert conflict.client_version.purchase_price == 5.0

        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.purchase_price == 7.5
        assert row.version == 1

    async def test_missing_client_timestamp_loses(
        self, session: AsyncSession, card_entry, seed
    ) -> None:
        """An entry without updated_at never overwrites a stored row."""
        await seed(utc_now() - timedelta(days=365), quantity=1)

        result = await reconcile_batch(session, "ash", [card_entry(quantity=5)])

        assert len(result.conflicts) == 1
        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.quantity == 1

    async def test_tie_with_same_values_is_noop(
        self, session: AsyncSession, card_entry, seed
    ) -> None:
        """Equal timestamps and values change nothing."""
        stamp = utc_now() - timedelta(hours=1)
        await seed(stamp)

        result = await reconcile_batch(session, "ash", [card_entry(updated_at=stamp.isoformat())])

        assert result.inserted == 0
        assert result.updated == 0
        assert result.conflicts == []
        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.version == 1

    async def test_tie_with_different_values_keeps_server(
        self, session: AsyncSession, card_entry, seed
    ) -> None:
        """Equal timestamps with different values resolve to the server copy."""
        stamp = utc_now() - timedelta(hours=1)
        await seed(stamp, quantity=1)

        result = await reconcile_batch(
            session, "ash", [card_entry(quantity=4, updated_at=stamp.isoformat())]
        )

        assert result.updated == 0
        assert len(result.conflicts) == 1
        assert result.conflicts[0].server_version.quantity == 1
        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.quantity == 1

    async def test_entries_are_decided_independently(
        self, session: AsyncSession, card_entry, seed
    ) -> None:
        """One batch can insert, update, and conflict."""
        hour_ago = utc_now() - timedelta(hours=1)
        await seed(hour_ago, card_id="pikachu-25")
        await seed(hour_ago, card_id="charizard-4")
        entries = [
            card_entry("pikachu-25", quantity=2, updated_at=utc_now().isoformat()),
            card_entry(
                "charizard-4", quantity=2, updated_at=(hour_ago - timedelta(hours=1)).isoformat()
            ),
            card_entry("mew-151"),
        ]

        result = await reconcile_batch(session, "ash", entries)

        assert result.inserted == 1
        assert result.updated == 1
        assert [c.card_id for c in result.conflicts] == ["charizard-4"]

    async def test_owners_are_isolated(self, session: AsyncSession, card_entry, seed) -> None:
        """A batch only touches the caller's rows."""
        await seed(utc_now() - timedelta(hours=1), user_id="misty", quantity=1)

        result = await reconcile_batch(
            session, "ash", [card_entry(quantity=6, updated_at=utc_now().isoformat())]
        )

        assert result.inserted == 1
        misty_row = await get_collection_card(session, "misty", "pikachu-25")
        assert misty_row.quantity == 1


class TestIdempotence:
    async def test_resent_update_changes_nothing(
        self, session: AsyncSession, card_entry, seed
    ) -> None:
        """Replaying an applied batch leaves the row as it was."""
        await seed(utc_now() - timedelta(hours=1), quantity=1)
        entries = [card_entry(quantity=2, updated_at=utc_now().isoformat())]

        first = await reconcile_batch(session, "ash", entries)
        row = await get_collection_card(session, "ash", "pikachu-25")
        version, updated_at = row.version, as_utc(row.updated_at)

        second = await reconcile_batch(session, "ash", entries)

        assert first.updated == 1
        assert second.inserted == 0
        assert second.updated == 0
        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.version == version
        assert as_utc(row.updated_at) == updated_at
        assert row.quantity == 2

    async def test_resent_update_from_fast_clock_changes_nothing(
        self, session: AsyncSession, card_entry, seed
    ) -> None:
        """A client clock ahead of the server does not re-apply on replay."""
        await seed(utc_now() - timedelta(hours=1), quantity=1)
        entries = [card_entry(quantity=2, updated_at=(utc_now() + timedelta(hours=2)).isoformat())]

        await reconcile_batch(session, "ash", entries)
        second = await reconcile_batch(session, "ash", entries)

        assert second.updated == 0
        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.version == 2

    async def test_resent_insert_changes_nothing(self, session: AsyncSession, card_entry) -> None:
        """Replaying an insert does not create or modify rows."""
        entries = [card_entry(quantity=2, updated_at=utc_now().isoformat())]

        first = await reconcile_batch(session, "ash", entries)
        second = await reconcile_batch(session, "ash", entries)

        assert first.inserted == 1
        assert second.inserted == 0
        assert second.updated == 0
        rows = await list_all_collection_cards(session, "ash")
        assert len(rows) == 1
        assert rows[0].quantity == 2
        assert rows[0].version == 1


class TestInvalidEntries:
    async def test_invalid_entries_are_skipped(self, session: AsyncSession, card_entry) -> None:
        """Malformed entries are ignored and not counted."""
        missing_name = card_entry("charizard-4")
        del missing_name["name"]
        entries = [
            card_entry("pikachu-25"),
            missing_name,
            card_entry("mew-151", quantity=0),
            card_entry("bulbasaur-44", image_large="nope"),
            "not an object",
            None,
        ]

        result = await reconcile_batch(session, "ash", entries)

        assert result.inserted == 1
        assert result.updated == 0
        assert result.conflicts == []
        rows = await list_all_collection_cards(session, "ash")
        assert [row.card_id for row in rows] == ["pikachu-25"]

    async def test_empty_batch(self, session: AsyncSession) -> None:
        """An empty batch is a no-op."""
        result = await reconcile_batch(session, "ash", [])

        assert result.inserted == 0
        assert result.updated == 0
        assert result.conflicts == []


class TestMixedWritePolicies:
    @pytest.fixture
    async def fast_clock_row(self, session: AsyncSession, card_entry) -> CollectionCardDB:
        """A row pushed by a device whose clock runs an hour ahead."""
        entry = card_entry(quantity=1, updated_at=(utc_now() + timedelta(hours=1)).isoformat())
        await reconcile_batch(session, "ash", [entry])
        await session.commit()
        return await get_collection_card(session, "ash", "pikachu-25")

    async def test_stale_edit_does_not_erase_merge(
        self, session: AsyncSession, card_entry, fast_clock_row: CollectionCardDB
    ) -> None:
        """An edit based on the row before a merge loses to the merge."""
        before = as_utc(fast_clock_row.updated_at)
        card = CollectionCardPayload.model_validate(card_entry(quantity=1))
        merged_row, _ = await add_or_merge_card(session, "ash", card)
        await session.commit()
        assert merged_row.quantity == 2

        stale = card_entry(
            quantity=1, updated_at=(before + timedelta(microseconds=1)).isoformat()
        )
        result = await reconcile_batch(session, "ash", [stale])

        assert result.updated == 0
        assert len(result.conflicts) == 1
        assert result.conflicts[0].server_version.quantity == 2
        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.quantity == 2

    async def test_stale_edit_does_not_erase_direct_edit(
        self, session: AsyncSession, card_entry, fast_clock_row: CollectionCardDB
    ) -> None:
        """An edit based on the row before a direct edit loses to it."""
        before = as_utc(fast_clock_row.updated_at)
        await update_collection_card(session, "ash", "pikachu-25", {"quantity": 5})
        await session.commit()

        stale = card_entry(
            quantity=1, updated_at=(before + timedelta(microseconds=1)).isoformat()
        )
        result = await reconcile_batch(session, "ash", [stale])

        assert result.updated == 0
        assert len(result.conflicts) == 1
        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.quantity == 5


class TestConcurrentWriters:
    async def test_lost_swap_is_decided_again(
        self, session: AsyncSession, card_entry, seed, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A swap beaten by a concurrent edit re-reads and re-decides."""
        await seed(utc_now() - timedelta(hours=1), quantity=1)
        swaps: list[int] = []

        async def swap_after_concurrent_edit(session, existing, values, not_before=None):
            swaps.append(existing.version)
            stale = CollectionCardDB(
                id=existing.id, version=existing.version, updated_at=existing.updated_at
            )
            await update_collection_card(session, "ash", existing.card_id, {"quantity": 9})
            return await compare_and_swap_card(session, stale, values, not_before=not_before)

        monkeypatch.setattr(reconciliation, "compare_and_swap_card", swap_after_concurrent_edit)
        entry = card_entry(quantity=2, updated_at=(utc_now() - timedelta(minutes=30)).isoformat())

        result = await reconcile_batch(session, "ash", [entry])

        assert swaps == [1]
        assert result.updated == 0
        assert len(result.conflicts) == 1
        assert result.conflicts[0].server_version.quantity == 9
        row = await get_collection_card(session, "ash", "pikachu-25")
        assert row.quantity == 9

    async def test_exhausted_attempts_report_conflict(
        self, session: AsyncSession, card_entry, seed, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """When every swap loses, the entry comes back as a conflict."""
        await seed(utc_now() - timedelta(hours=1), quantity=1)
        swaps: list[int] = []

        async def always_lose(session, existing, values, not_before=None):
            swaps.append(existing.version)
            return None

        monkeypatch.setattr(reconciliation, "compare_and_swap_card", always_lose)
        entry = card_entry(quantity=2, updated_at=utc_now().isoformat())

        result = await reconcile_batch(session, "ash", [entry])

        assert len(swaps) == reconciliation.MAX_RECONCILE_ATTEMPTS
        assert result.updated == 0
        assert len(result.conflicts) == 1
        assert result.conflicts[0].server_version.quantity == 1


class TestDecide:
    def _row(self, updated_at, **overrides) -> CollectionCardDB:
        values = {
            "name": "Pikachu",
            "set_id": "base1",
            "set_name": "Base",
            "number": "25",
            "rarity": "Common",
            "image_small": "https://images.pokemontcg.io/base1/25.png",
            "image_large": "https://images.pokemontcg.io/base1/25_hires.png",
            "quantity": 1,
            "purchase_price": None,
            "current_price": None,
        }
        values.update(overrides)
        return CollectionCardDB(
            id="row-1", user_id="ash", card_id="pikachu-25", updated_at=updated_at, **values
        )

    def test_client_newer(self, card_entry) -> None:
        """A later client timestamp wins."""
        now = utc_now()
        card = CollectionCardPayload.model_validate(card_entry(updated_at=now.isoformat()))

        assert decide(self._row(now - timedelta(seconds=1)), card) is Decision.UPDATE

    def test_server_newer(self, card_entry) -> None:
        """A later server timestamp wins."""
        now = utc_now()
        card = CollectionCardPayload.model_validate(card_entry(updated_at=now.isoformat()))

        assert decide(self._row(now + timedelta(seconds=1)), card) is Decision.CONFLICT

    def test_tie_unchanged(self, card_entry) -> None:
        """A tie with equal values is unchanged."""
        now = utc_now()
        card = CollectionCardPayload.model_validate(card_entry(updated_at=now.isoformat()))

        assert decide(self._row(now), card) is Decision.UNCHANGED

    def test_tie_conflict(self, card_entry) -> None:
        """A tie with different values is a conflict."""
        now = utc_now()
        card = CollectionCardPayload.model_validate(
            card_entry(quantity=3, updated_at=now.isoformat())
        )

        assert decide(self._row(now), card) is Decision.CONFLICT

    def test_naive_server_timestamp(self, card_entry) -> None:
        """Naive stored timestamps compare as UTC."""
        now = utc_now()
        card = CollectionCardPayload.model_validate(card_entry(updated_at=now.isoformat()))

        assert decide(self._row(now.replace(tzinfo=None)), card) is Decision.UNCHANGED
