import asyncio

import pytest

from chathub.utils.locks import ChatLockRegistry


@pytest.mark.asyncio
async def test_same_chat_is_serialized():
    locks = ChatLockRegistry()
    order = []

    async def work(name):
        async with locks.hold("chat1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(work("a"), work("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_different_chats_run_in_parallel():
    locks = ChatLockRegistry()
    inside = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with locks.hold("chat1"):
            inside.set()
            await release.wait()

    task = asyncio.create_task(holder())
    await inside.wait()

    async with locks.hold("chat2"):
        assert locks.is_locked("chat1")
        assert locks.is_locked("chat2")

    release.set()
    await task


@pytest.mark.asyncio
async def test_idle_locks_are_discarded():
    locks = ChatLockRegistry()
    async with locks.hold("chat1"):
        assert len(locks) == 1
    assert len(locks) == 0
    assert not locks.is_locked("chat1")


@pytest.mark.asyncio
async def test_lock_is_released_when_the_body_raises():
    locks = ChatLockRegistry()
    with pytest.raises(RuntimeError):
        async with locks.hold("chat1"):
            raise RuntimeError("boom")
    assert len(locks) == 0
