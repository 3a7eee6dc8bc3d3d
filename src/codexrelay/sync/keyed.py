"""
Per-key task serialization.

Tasks submitted under the same key run one after another in submission
order; tasks under different keys run freely. The chain for a key is
dropped as soon as its last task finishes, so sporadically used keys cost
nothing between uses.
"""

import asyncio
from typing import Awaitable, Callable, Hashable, TypeVar

T = TypeVar("T")


class KeyedSerializer:
    """FIFO chain of pending futures per key."""

    def __init__(self) -> None:
        self._tails: dict[Hashable, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._tails)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._tails

    async def run(self, key: Hashable, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run func() once every earlier task for key has finished.

        Exceptions from func propagate to the caller and do not break the
        chain. If the caller is cancelled while still waiting, its slot is
        released only after its predecessor finishes, so successors never
        overlap the predecessor.
        """
        loop = asyncio.get_running_loop()
        previous = self._tails.get(key)
        done: asyncio.Future = loop.create_future()
        self._tails[key] = done

        def _release(_: object = None) -> None:
            if not done.done():
                done.set_result(None)
            if self._tails.get(key) is done:
                del self._tails[key]

        try:
            if previous is not None:
                await asyncio.shield(previous)
            return await func()
        finally:
            if previous is not None and not previous.done():
                previous.add_done_callback(_release)
            else:
                _release()
