import asyncio

import pytest

from gate import ConcurrencyGate


def test_try_acquire_stops_at_ceiling_without_side_effect():
    gate = ConcurrencyGate(max_in_flight=3)

    assert [gate.try_acquire() for _ in range(3)] == [True, True, True]
    assert gate.at_limit
    assert gate.try_acquire() is False
    assert gate.in_flight == 3

    gate.release()
    assert gate.try_acquire() is True


def test_release_floors_at_zero():
    gate = ConcurrencyGate()
    gate.release()
    assert gate.in_flight == 0


def test_rejects_nonsense_ceiling():
    with pytest.raises(ValueError):
        ConcurrencyGate(max_in_flight=0)


def test_admit_releases_after_failure():
    gate = ConcurrencyGate(max_in_flight=1)

    async def scenario():
        with pytest.raises(RuntimeError):
            async with gate.admit() as admitted:
                assert admitted
                assert gate.in_flight == 1
                raise RuntimeError("remote call blew up")
        assert gate.in_flight == 0

        gate.try_acquire()
        async with gate.admit() as admitted:
            assert admitted is False
        # a denied admission must not release someone else's token
        assert gate.in_flight == 1

    asyncio.run(scenario())
