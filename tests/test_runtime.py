import asyncio

import pytest

from app.services.runtime import SettlementRuntime
from conftest import BTC_CHAIN, ETH_CHAIN, FakeAsyncSession, FakeRedis, session_factory_for


class _PollingRedis(FakeRedis):
    """FakeRedis whose blocking pop actually waits, like a real BLMOVE."""

    async def blmove(self, source, destination, timeout, src="LEFT", dest="RIGHT"):
        await asyncio.sleep(0.01)
        return await self.lmove(source, destination, src, dest)


class _Watcher:
    def __init__(self, blockchain_key: str, *, acquires: bool = True, error: Exception | None = None) -> None:
        self.blockchain_key = blockchain_key
        self.acquires = acquires
        self.error = error
        self.running = False
        self.stopped = False

    async def start(self) -> bool:
        if self.error is not None:
            raise self.error
        self.running = self.acquires
        return self.acquires

    async def stop(self) -> None:
        self.running = False
        self.stopped = True


@pytest.mark.asyncio
async def test_runtime_starts_what_it_can_and_stops_cleanly() -> None:
    healthy = _Watcher(ETH_CHAIN)
    leased_elsewhere = _Watcher("eip155:137", acquires=False)
    broken = _Watcher(BTC_CHAIN, error=ConnectionError("rpc down"))
    runtime = SettlementRuntime(
        session_factory=session_factory_for(FakeAsyncSession()),
        redis=_PollingRedis(),
        watchers=[healthy, leased_elsewhere, broken],
    )

    await runtime.start()
    try:
        assert runtime.started_watchers == [healthy]
        status = runtime.status()
        assert status["enabled"] is True
        assert status["watchers"] == {ETH_CHAIN: True, "eip155:137": False, BTC_CHAIN: False}
        assert status["tracked_blockchains"] == []
    finally:
        await runtime.stop()

    assert healthy.stopped is True
    assert leased_elsewhere.stopped is False
    assert runtime.started_watchers == []
    assert runtime.worker._task is None
