"""Tests for the in-memory click store."""

import asyncio
from uuid import uuid4

import pytest
from calltrack.errors import ConflictError, NotFoundError, ValidationError
from calltrack.store import MAX_NUMBER_DIGITS, prepare_click

from factories import T0, at, make_click


class TestPrepareClick:
    """Tests for click normalization before persistence."""

    def test_normalizes_number(self):
        prepared = prepare_click(make_click("(555) 123-4567"))
        assert prepared.clicked_number == "5551234567"

    def test_resets_match_fields(self):
        click = make_click(matched=True, caller_number="1", call_start=T0, lead_sent=True)
        prepared = prepare_click(click)

        assert prepared.matched is False
        assert prepared.caller_number is None
        assert prepared.call_start is None
        assert prepared.lead_sent is False

    def test_rejects_number_without_digits(self):
        with pytest.raises(ValidationError):
            prepare_click(make_click("call now"))

    def test_rejects_overlong_number(self):
        with pytest.raises(ValidationError):
            prepare_click(make_click("9" * (MAX_NUMBER_DIGITS + 1)))


class TestInMemoryClickStore:
    """Tests for InMemoryClickStore."""

    @pytest.mark.asyncio
    async def test_record_and_get(self, store):
        click = make_click("555.123.4567", affiliate_id="aff-1")
        click_id = await store.record(click)

        stored = await store.get(click_id)
        assert click_id == click.id
        assert stored.clicked_number == "5551234567"
        assert stored.affiliate_id == "aff-1"
        assert stored.matched is False

    @pytest.mark.asyncio
    async def test_get_unknown(self, store):
        assert await store.get(uuid4()) is None

    @pytest.mark.asyncio
    async def test_invalid_click_not_stored(self, store):
        with pytest.raises(ValidationError):
            await store.record(make_click(""))
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_list_unmatched_most_recent_first(self, store):
        old = make_click(created_at=at(0))
        new = make_click(created_at=at(60))
        middle = make_click(created_at=at(30))
        for click in (old, new, middle):
            await store.record(click)

        unmatched = await store.list_unmatched()
        assert [c.id for c in unmatched] == [new.id, middle.id, old.id]

    @pytest.mark.asyncio
    async def test_mark_matched(self, store):
        click_id = await store.record(make_click())

        updated = await store.mark_matched(click_id, "5559998888", at(5), 42)

        assert updated.matched is True
        assert updated.caller_number == "5559998888"
        assert updated.call_start == at(5)
        assert updated.call_duration == 42
        assert await store.list_unmatched() == []

    @pytest.mark.asyncio
    async def test_mark_matched_twice_conflicts(self, store):
        click_id = await store.record(make_click())
        await store.mark_matched(click_id, "5559998888", at(5), 42)

        with pytest.raises(ConflictError):
            await store.mark_matched(click_id, "5550000000", at(9), 1)

        stored = await store.get(click_id)
        assert stored.caller_number == "5559998888"

    @pytest.mark.asyncio
    async def test_mark_matched_unknown(self, store):
        with pytest.raises(NotFoundError):
            await store.mark_matched(uuid4(), "1", T0, 0)

    @pytest.mark.asyncio
    async def test_concurrent_mark_matched_single_winner(self, store):
        click_id = await store.record(make_click())

        results = await asyncio.gather(
            *(
                store.mark_matched(click_id, f"555000000{i}", at(i), i)
                for i in range(10)
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(winners) == 1
        assert len(conflicts) == 9

    @pytest.mark.asyncio
    async def test_list_matched_between(self, store):
        inside = await store.record(make_click())
        outside = await store.record(make_click())
        await store.record(make_click())  # stays unmatched
        await store.mark_matched(inside, "1", at(10), 1)
        await store.mark_matched(outside, "2", at(5000), 1)

        matched = await store.list_matched_between(at(0), at(600))
        assert [c.id for c in matched] == [inside]

    @pytest.mark.asyncio
    async def test_record_lead_delivery(self, store):
        click_id = await store.record(make_click())
        await store.mark_matched(click_id, "1", at(5), 1)

        await store.record_lead_delivery(click_id, "lead_service_timeout")
        failed = await store.get(click_id)
        assert failed.lead_sent is False
        assert failed.lead_error == "lead_service_timeout"
        assert failed.matched is True

        await store.record_lead_delivery(click_id)
        sent = await store.get(click_id)
        assert sent.lead_sent is True
        assert sent.lead_error is None

    @pytest.mark.asyncio
    async def test_record_lead_delivery_unknown(self, store):
        with pytest.raises(NotFoundError):
            await store.record_lead_delivery(uuid4())
