from pathlib import Path

import pytest
from conftest import FakeClock, make_ledger

from pbl.config import LedgerSettings
from pbl.domain.errors import ConcurrencyConflict
from pbl.services.conflicts import run_with_conflict_retry
from pbl.services.sales_service import SalesService

FAST_LOCKS = LedgerSettings(conflict_retries=1, conflict_backoff_seconds=0.0, busy_timeout_seconds=0.05)


def test_checkout_reports_conflict_while_ledger_is_locked(tmp_path: Path):
    ledger = make_ledger(tmp_path, settings=FAST_LOCKS)
    pid = ledger.inventory.add_product("Omega 3")
    ledger.batches.add_batch(pid, 10, purchase_price="4", selling_price="7")

    with ledger.repo.unit_of_work():
        outcome = ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 1}])

    assert not outcome.success
    assert outcome.error_kind == "concurrency_conflict"
    assert ledger.inventory.get_product(pid).total_stock == 10


def test_checkout_retries_after_lock_is_released(tmp_path: Path):
    settings = LedgerSettings(conflict_retries=2, conflict_backoff_seconds=0.01, busy_timeout_seconds=0.05)
    clock = FakeClock()
    ledger = make_ledger(tmp_path, clock, settings=settings)
    pid = ledger.inventory.add_product("Probiotic")
    ledger.batches.add_batch(pid, 10, purchase_price="4", selling_price="7")

    blocker = ledger.repo.unit_of_work().__enter__()
    waits = []

    def release_then_wait(seconds):
        waits.append(seconds)
        blocker.__exit__(None, None, None)

    sales = SalesService(ledger.repo, settings=settings, clock=clock, sleep=release_then_wait)
    outcome = sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 3}])

    assert outcome.success
    assert waits == [0.01]
    assert ledger.inventory.get_product(pid).total_stock == 7


def test_second_checkout_sees_first_checkouts_decrement(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    pid = ledger.inventory.add_product("Antacid")
    ledger.batches.add_batch(pid, 10, purchase_price="1", selling_price="2")

    first = ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 6}])
    second = ledger.sales.create_sale_with_items({}, [{"product_id": pid, "quantity": 6}])

    assert first.success
    assert not second.success
    assert second.available == 4


def test_retry_backoff_doubles_and_gives_up():
    waits = []
    calls = []

    def always_conflicts():
        calls.append(1)
        raise ConcurrencyConflict("locked")

    settings = LedgerSettings(conflict_retries=3, conflict_backoff_seconds=0.1)
    with pytest.raises(ConcurrencyConflict):
        run_with_conflict_retry(always_conflicts, settings, "test", sleep=waits.append)

    assert len(calls) == 4
    assert waits == pytest.approx([0.1, 0.2, 0.4])


def test_retry_returns_first_success():
    attempts = iter([ConcurrencyConflict("locked"), "done"])

    def flaky():
        result = next(attempts)
        if isinstance(result, Exception):
            raise result
        return result

    settings = LedgerSettings(conflict_retries=3, conflict_backoff_seconds=0.0)
    assert run_with_conflict_retry(flaky, settings, "test", sleep=lambda s: None) == "done"
