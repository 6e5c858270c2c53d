"""
Unit tests for pending request slots.

Tests cover:
- Resolution before the deadline
- Timeout resolving to None
- Supersession by a newer request of the same kind
- Unsolicited responses
"""

import asyncio

import pytest

from nas_core.localization import PendingRequest, PendingRequestTable, RequestKind
from nas_core.metrics import MetricsCollector


class TestPendingRequest:
    """Tests for a single slot."""

    @pytest.mark.asyncio
    async def test_resolves_with_response(self):
        request = PendingRequest(RequestKind.GET_ANCHOR, timeout_s=1.0)
        asyncio.get_running_loop().call_soon(request.resolve, "response")

        assert await request.wait() == "response"
        assert not request.timed_out

    @pytest.mark.asyncio
    async def test_timeout_yields_none(self):
        request = PendingRequest(RequestKind.GET_ANCHOR, timeout_s=0.02)

        assert await request.wait() is None
        assert request.timed_out
        assert request.done

    @pytest.mark.asyncio
    async def test_late_response_after_timeout_is_ignored(self):
        request = PendingRequest(RequestKind.GET_ANCHOR, timeout_s=0.01)
        await request.wait()

        assert request.resolve("late") is False
        assert request.result is None

    @pytest.mark.asyncio
    async def test_resolves_only_once(self):
        request = PendingRequest(RequestKind.CONNECT, timeout_s=1.0)

        assert request.resolve("first") is True
        assert request.resolve("second") is False
        assert await request.wait() == "first"

    @pytest.mark.asyncio
    async def test_deadline_starts_when_armed(self):
        request = PendingRequest(RequestKind.CREATE_ANCHOR, timeout_s=0.05)
        assert request.deadline is None

        await asyncio.sleep(0.06)
        request.arm()
        asyncio.get_running_loop().call_later(0.01, request.resolve, "ok")

        assert await request.wait() == "ok"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_slot_open(self):
        """Cancelling the awaiting task orphans the slot instead of resolving it."""
        request = PendingRequest(RequestKind.GET_ANCHOR, timeout_s=1.0)
        waiter = asyncio.ensure_future(request.wait())
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert not request.done
        assert request.resolve("late") is True


class TestPendingRequestTable:
    """Tests for one-slot-per-kind bookkeeping."""

    @pytest.mark.asyncio
    async def test_new_request_supersedes_prior(self):
        metrics = MetricsCollector()
        table = PendingRequestTable(metrics)

        first = table.install(RequestKind.GET_ANCHOR, 1.0)
        second = table.install(RequestKind.GET_ANCHOR, 1.0)

        assert await first.wait() is None
        assert first.superseded
        assert table.get(RequestKind.GET_ANCHOR) is second
        assert metrics.get_counter('requests_superseded') == 1
        assert metrics.get_counter('requests_issued') == 2

    @pytest.mark.asyncio
    async def test_superseded_awaiter_never_sees_a_response(self):
        table = PendingRequestTable(MetricsCollector())
        first = table.install(RequestKind.GET_ANCHOR, 1.0)
        second = table.install(RequestKind.GET_ANCHOR, 1.0)

        assert table.resolve(RequestKind.GET_ANCHOR, "response")

        assert await first.wait() is None
        assert await second.wait() == "response"

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self):
        table = PendingRequestTable(MetricsCollector())
        anchor = table.install(RequestKind.GET_ANCHOR, 1.0)
        connect = table.install(RequestKind.CONNECT, 1.0)

        table.resolve(RequestKind.CONNECT, "directory")

        assert not anchor.done
        assert await connect.wait() == "directory"
        assert RequestKind.GET_ANCHOR in table
        assert RequestKind.CONNECT not in table

    @pytest.mark.asyncio
    async def test_second_response_is_unsolicited(self):
        table = PendingRequestTable(MetricsCollector())
        table.install(RequestKind.CREATE_ANCHOR, 1.0)

        assert table.resolve(RequestKind.CREATE_ANCHOR, "first") is True
        assert table.resolve(RequestKind.CREATE_ANCHOR, "second") is False

    def test_resolve_without_slot(self):
        table = PendingRequestTable(MetricsCollector())
        assert table.resolve(RequestKind.GET_REMOTE_COORDINATES, "x") is False

    @pytest.mark.asyncio
    async def test_discard_keeps_newer_slot(self):
        table = PendingRequestTable(MetricsCollector())
        first = table.install(RequestKind.GET_ANCHOR, 1.0)
        second = table.install(RequestKind.GET_ANCHOR, 1.0)

        table.discard(first)

        assert table.get(RequestKind.GET_ANCHOR) is second

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        table = PendingRequestTable(MetricsCollector())
        requests = [table.install(kind, 1.0) for kind in RequestKind]

        table.cancel_all()

        assert len(table) == 0
        for request in requests:
            assert await request.wait() is None
            assert request.cancelled
            assert request.abandoned
            assert not request.superseded

    @pytest.mark.asyncio
    async def test_timed_out_slot_is_not_abandoned(self):
        table = PendingRequestTable(MetricsCollector())
        request = table.install(RequestKind.GET_ANCHOR, 0.01)

        assert await request.wait() is None
        assert request.timed_out
        assert not request.abandoned

    @pytest.mark.asyncio
    async def test_superseded_slot_is_abandoned(self):
        table = PendingRequestTable(MetricsCollector())
        first = table.install(RequestKind.GET_ANCHOR, 1.0)
        table.install(RequestKind.GET_ANCHOR, 1.0)

        assert await first.wait() is None
        assert first.abandoned
        assert not first.cancelled
