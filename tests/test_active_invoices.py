import pytest

from app.services.active_invoices import ActiveInvoiceCache, normalize_address
from conftest import BTC_CHAIN, ETH_CHAIN, FakeAsyncSession, FakeResult, make_invoice, session_factory_for


def _cache(session: FakeAsyncSession | None = None, page_size: int = 2) -> ActiveInvoiceCache:
    return ActiveInvoiceCache(
        session_factory_for(session or FakeAsyncSession()), refresh_interval=60, page_size=page_size
    )


def test_lookup_is_case_insensitive() -> None:
    cache = _cache()
    invoice = make_invoice(wallet_address="0xAbCd00000000000000000000000000000000Ef01")
    cache.put(invoice)

    hit = cache.get_invoice(ETH_CHAIN, "0xabcd00000000000000000000000000000000ef01 ")
    assert hit is not None
    assert hit.id == invoice.id
    assert hit.invoiced_amount == 1_000_000
    assert cache.get_invoice(BTC_CHAIN, invoice.wallet_address) is None


def test_discard_removes_address() -> None:
    cache = _cache()
    invoice = make_invoice()
    cache.put(invoice)
    cache.discard(ETH_CHAIN, invoice.wallet_address.upper())
    assert cache.list_invoices(ETH_CHAIN) == []
    cache.discard(BTC_CHAIN, "unknown")


def test_normalize_address() -> None:
    assert normalize_address("  0xABC ") == "0xabc"


@pytest.mark.asyncio
async def test_refresh_pages_through_pending_invoices() -> None:
    session = FakeAsyncSession()
    pages = [
        [make_invoice(id=1, wallet_address="0x01"), make_invoice(id=2, wallet_address="0x02")],
        [make_invoice(id=3, wallet_address="bc1q03", blockchain_key=BTC_CHAIN, token_id="slip44:0")],
    ]
    session.on_execute(lambda _stmt: FakeResult(items=pages.pop(0)) if pages else None)
    cache = _cache(session)
    cache.put(make_invoice(id=99, wallet_address="0xstale"))

    assert await cache.refresh() == 3

    assert cache.get_invoice(ETH_CHAIN, "0xstale") is None
    assert {item.id for item in cache.list_invoices(ETH_CHAIN)} == {1, 2}
    assert cache.get_invoice(BTC_CHAIN, "BC1Q03").id == 3
    assert cache.tracked_blockchains() == sorted([ETH_CHAIN, BTC_CHAIN])
    assert len(session.executed) == 2
    assert "invoices.id >" in str(session.executed[1])


@pytest.mark.asyncio
async def test_refresh_chain_replaces_only_that_chain() -> None:
    session = FakeAsyncSession()
    session.on_execute_return(FakeResult(items=[make_invoice(id=5, wallet_address="0x05")]))
    cache = _cache(session)
    cache.put(make_invoice(id=6, wallet_address="bc1q06", blockchain_key=BTC_CHAIN, token_id="slip44:0"))

    assert await cache.refresh_chain(ETH_CHAIN) == 1
    assert cache.get_invoice(ETH_CHAIN, "0x05").id == 5
    assert cache.get_invoice(BTC_CHAIN, "bc1q06").id == 6
