# /chathub/utils/locks.py

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class ChatLockRegistry:
    """
    One asyncio.Lock per chat id.

    Every operation that reads, computes and writes back a chat runs inside
    ``hold(chat_id)``, so at most one such operation is in flight per chat
    while different chats proceed in parallel. Entries are dropped as soon
    as nobody holds or waits on them.
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, chat_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(chat_id)
        if entry is None:
            entry = self._entries[chat_id] = _Entry()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(chat_id, None)

    def is_locked(self, chat_id: str) -> bool:
        entry = self._entries.get(chat_id)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)


# Globally accessible instance
chat_locks = ChatLockRegistry()
