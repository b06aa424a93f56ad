import asyncio

import pytest

from minidrone_comms.errors import PendingAckConflict, TransportIOError
from minidrone_comms.pending import PendingAckTable


def test_resolve_completes_and_removes() -> None:
    async def scenario() -> None:
        table = PendingAckTable()
        future = table.register(11, 4)

        assert (11, 4) in table
        assert table.resolve(11, 4) is True
        await asyncio.wait_for(future, 1.0)
        assert len(table) == 0

    asyncio.run(scenario())


def test_unknown_key_is_noop() -> None:
    async def scenario() -> None:
        table = PendingAckTable()
        table.register(11, 4)

        assert table.resolve(11, 5) is False
        assert table.resolve(12, 4) is False
        assert len(table) == 1

    asyncio.run(scenario())


def test_duplicate_registration_rejected() -> None:
    async def scenario() -> None:
        table = PendingAckTable()
        table.register(11, 4)

        with pytest.raises(PendingAckConflict, match="buffer 11 packet 4"):
            table.register(11, 4)

    asyncio.run(scenario())


def test_discard_cancels() -> None:
    async def scenario() -> None:
        table = PendingAckTable()
        future = table.register(11, 1)
        table.discard(11, 1)

        assert future.cancelled()
        assert (11, 1) not in table

    asyncio.run(scenario())


def test_fail_all_rejects_everything() -> None:
    async def scenario() -> None:
        table = PendingAckTable()
        first = table.register(11, 1)
        second = table.register(12, 1)

        assert table.fail_all(TransportIOError("gone")) == 2
        assert len(table) == 0
        for future in (first, second):
            with pytest.raises(TransportIOError, match="gone"):
                await future

    asyncio.run(scenario())
