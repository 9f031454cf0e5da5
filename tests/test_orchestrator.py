"""Tests for import cycles."""

import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from firedragon.adapters.base import AUTH, NETWORK, RATE_LIMIT, SourceError
from firedragon.config import RetryConfig
from firedragon.domain.entities import COMPLETED, FAILED, TransactionDraft
from firedragon.importer.orchestrator import (
    ImportCancelled,
    ImportOrchestrator,
    ImportSource,
    call_with_retry,
)

from fakes import FakeSink, FakeSource, make_tx

MAR_1 = datetime(2024, 3, 1, 12, 0)
MAR_2 = datetime(2024, 3, 2, 12, 0)
MAR_3 = datetime(2024, 3, 3, 12, 0)


def balance(wallet_service, wallet):
    return wallet_service.get_wallet(wallet.id).balance


def test_imports_deposits_and_withdrawals(orchestrator, make_source, fake_sink, wallet_service, usd_wallet, ledger):
    source = make_source(
        [
            make_tx("b", "30", direction="withdrawal", date=MAR_2),
            make_tx("a", "100", direction="deposit", date=MAR_1),
        ]
    )

    result = orchestrator.run_cycle(source)

    assert result.ok
    assert result.imported == 2
    assert result.skipped == 0
    assert result.failed == 0
    assert result.watermark == MAR_2
    assert balance(wallet_service, usd_wallet) == Decimal("1070")

    transactions = ledger.list_transactions()
    assert {t.transaction_type for t in transactions} == {"income", "expense"}
    assert all(t.status == COMPLETED for t in transactions)
    assert all(t.tags == ("source:bank",) for t in transactions)

    # Mirrored in date order, currency looked up once per cycle
    assert fake_sink.created == [("acct-1", "cur-USD", "a"), ("acct-1", "cur-USD", "b")]
    assert fake_sink.currency_lookups == ["USD"]


def test_transactions_are_categorized_per_direction(orchestrator, make_source, ledger, categories):
    source = make_source(
        [make_tx("a", "100", date=MAR_1), make_tx("b", "5", direction="out", date=MAR_2)],
        income_category="Salary",
        expense_category="Food",
    )

    orchestrator.run_cycle(source)

    by_id = {t.external_id: t for t in ledger.list_transactions()}
    assert by_id["a"].category_id == categories["Salary"].id
    assert by_id["b"].category_id == categories["Food"].id


def test_second_cycle_is_idempotent(orchestrator, make_source, fake_sink, wallet_service, usd_wallet):
    source = make_source([make_tx("a", "100", date=MAR_1), make_tx("b", "25", date=MAR_2)])

    first = orchestrator.run_cycle(source)
    second = orchestrator.run_cycle(source)

    assert first.imported == 2
    assert second.imported == 0
    assert second.skipped == 1
    assert second.watermark == first.watermark == MAR_2
    assert balance(wallet_service, usd_wallet) == Decimal("1125")
    assert len(fake_sink.created) == 2


def test_fetch_starts_at_watermark(orchestrator, make_source):
    source = make_source([make_tx("a", "100", date=MAR_1)], limit=50)

    orchestrator.run_cycle(source)
    orchestrator.run_cycle(source)

    calls = source.adapter.calls
    assert calls[0] == {"account": "acct-1", "limit": 50, "from_date": None, "to_date": None}
    assert calls[1]["from_date"] == MAR_1


def test_start_date_overrides_watermark(orchestrator, make_source, import_ledger):
    import_ledger.advance_watermark("bank", MAR_3)
    source = make_source([make_tx("a", "100", date=MAR_2)], start_date=MAR_1, end_date=MAR_3)

    result = orchestrator.run_cycle(source)

    assert source.adapter.calls[0]["from_date"] == MAR_1
    assert source.adapter.calls[0]["to_date"] == MAR_3
    assert result.imported == 1
    assert result.watermark == MAR_3


def test_failed_transaction_does_not_block_others(orchestrator, make_source, fake_sink, wallet_service, usd_wallet, ledger):
    source = make_source(
        [
            make_tx("a", "10", date=MAR_1),
            make_tx("b", "5000", direction="withdrawal", date=MAR_2),
            make_tx("c", "20", date=MAR_3),
        ]
    )

    result = orchestrator.run_cycle(source)

    assert result.imported == 2
    assert result.failed == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith("b: Insufficient balance")
    assert result.watermark == MAR_3
    assert balance(wallet_service, usd_wallet) == Decimal("1030")

    failed = ledger.list_transactions(status=FAILED)
    assert [t.external_id for t in failed] == ["b"]
    assert "Insufficient balance" in failed[0].failure_reason
    assert [c[2] for c in fake_sink.created] == ["a", "c"]
    assert not orchestrator.import_ledger.is_imported("b")


def test_failed_import_is_retried_when_fetched_again(orchestrator, make_source, wallet_service, usd_wallet, ledger, categories):
    source = make_source([make_tx("big", "5000", direction="withdrawal", date=MAR_2)])

    first = orchestrator.run_cycle(source)
    assert first.failed == 1
    assert first.watermark is None

    ledger.create_transaction(
        TransactionDraft(
            amount=Decimal("5000"),
            date=MAR_1,
            transaction_type="income",
            wallet_id=usd_wallet.id,
            category_id=categories["Salary"].id,
        )
    )

    second = orchestrator.run_cycle(source)

    assert second.imported == 1
    assert second.failed == 0
    retried = ledger.list_transactions(status=COMPLETED)
    assert "big" in [t.external_id for t in retried]
    assert ledger.list_transactions(status=FAILED) == []
    assert balance(wallet_service, usd_wallet) == Decimal("1000")
    assert orchestrator.import_ledger.is_imported("big")


def test_currency_mismatch_fails_transaction(orchestrator, make_source, ledger):
    result = orchestrator.run_cycle(make_source([make_tx("eth-1", "1.5", currency="ETH")]))

    assert result.imported == 0
    assert result.failed == 1
    assert "does not match wallet" in result.errors[0]
    assert [t.external_id for t in ledger.list_transactions(status=FAILED)] == ["eth-1"]


def test_manually_entered_external_id_is_skipped(orchestrator, make_source, ledger, usd_wallet, categories):
    ledger.create_transaction(
        TransactionDraft(
            amount=Decimal("75"),
            date=MAR_1,
            transaction_type="income",
            wallet_id=usd_wallet.id,
            category_id=categories["Salary"].id,
            external_id="a",
        )
    )

    result = orchestrator.run_cycle(make_source([make_tx("a", "100", date=MAR_2)]))

    assert result.imported == 0
    assert result.skipped == 1
    assert len(ledger.list_transactions()) == 1


def test_unknown_direction_is_counted_as_failed(orchestrator, make_source, ledger):
    result = orchestrator.run_cycle(make_source([make_tx("x", "1", direction="sideways")]))

    assert result.failed == 1
    assert "Unknown direction" in result.errors[0]
    assert ledger.list_transactions() == []


def test_semantic_duplicates_within_batch_are_skipped(orchestrator, make_source, wallet_service, usd_wallet):
    source = make_source(
        [
            make_tx("a", "15", date=MAR_1),
            make_tx("b", "15", date=MAR_1 + timedelta(hours=1)),
        ]
    )

    result = orchestrator.run_cycle(source)

    assert result.imported == 1
    assert result.skipped == 1
    assert balance(wallet_service, usd_wallet) == Decimal("1015")


def two_sources_for_one_wallet(make_source):
    """A deposit feed and a card feed that both book into Checking."""
    shared = make_tx("shared", "5", date=MAR_1 - timedelta(days=1))
    deposits = [make_tx(f"bank-{i}", str(10 + i), date=MAR_1 + timedelta(days=i)) for i in range(20)]
    card = [
        make_tx(f"card-{i}", str(30 + i), direction="withdrawal", date=MAR_1 + timedelta(days=i))
        for i in range(20)
    ]
    return make_source([shared, *deposits]), make_source([shared, *card], name="card")


def test_concurrent_sources_share_a_wallet_safely(orchestrator, make_source, wallet_service, usd_wallet, ledger):
    sources = two_sources_for_one_wallet(make_source)
    barrier = threading.Barrier(len(sources))
    results = {}

    def run(source):
        barrier.wait()
        results[source.name] = orchestrator.run_cycle(source)

    threads = [threading.Thread(target=run, args=(source,)) for source in sources]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sum(r.imported for r in results.values()) == 41
    assert sum(r.skipped for r in results.values()) == 1
    assert all(r.failed == 0 for r in results.values())

    # 1000 + 5 + (10..29) - (30..49)
    assert balance(wallet_service, usd_wallet) == Decimal("605")
    assert ledger.recompute_balance(usd_wallet.id) == Decimal("605")

    import_ledger = orchestrator.import_ledger
    assert import_ledger.count() == 41
    assert import_ledger.count("bank") + import_ledger.count("card") == 41
    external_ids = [t.external_id for t in ledger.list_transactions()]
    assert len(external_ids) == len(set(external_ids)) == 41


def test_retries_transient_fetch_failures(orchestrator, make_source):
    source = make_source(
        [make_tx("a", "100")],
        failures=[SourceError("timed out", NETWORK), SourceError("slow down", RATE_LIMIT)],
    )

    result = orchestrator.run_cycle(source)

    assert result.imported == 1
    assert result.ok
    assert len(source.adapter.calls) == 3


def test_exhausted_retries_leave_state_unchanged(orchestrator, make_source, import_ledger, ledger):
    source = make_source(
        [make_tx("a", "100")],
        failures=[SourceError("timed out", NETWORK) for _ in range(3)],
    )

    result = orchestrator.run_cycle(source)

    assert result.imported == 0
    assert result.errors == ["fetch: timed out"]
    assert result.watermark is None
    assert len(source.adapter.calls) == 3
    assert import_ledger.get_watermark("bank") is None
    assert ledger.list_transactions() == []


def test_permanent_fetch_failure_is_not_retried(orchestrator, make_source):
    source = make_source([make_tx("a", "100")], failures=[SourceError("bad key", AUTH)])

    result = orchestrator.run_cycle(source)

    assert result.errors == ["fetch: bad key"]
    assert len(source.adapter.calls) == 1


def test_sink_failure_keeps_local_commit(temp_db, make_source, wallet_service, usd_wallet):
    sink = FakeSink(fail_ids={"a"})
    orchestrator = ImportOrchestrator(temp_db, sink, retry=RetryConfig(attempts=1, backoff_seconds=0))
    source = make_source([make_tx("a", "100", date=MAR_1), make_tx("b", "50", date=MAR_2)])

    result = orchestrator.run_cycle(source)

    assert result.imported == 2
    assert result.errors == ["sink a: sink rejected a"]
    assert balance(wallet_service, usd_wallet) == Decimal("1150")
    assert sink.created == [("acct-1", "cur-USD", "b")]
    assert orchestrator.import_ledger.is_imported("a")


def test_sink_account_defaults_to_source_account(orchestrator, make_source, fake_sink):
    orchestrator.run_cycle(make_source([make_tx("a", "1")], sink_account="42"))

    assert fake_sink.created == [("42", "cur-USD", "a")]


def test_missing_wallet_aborts_cycle(orchestrator, make_source):
    source = make_source([make_tx("a", "100")], wallet="Nowhere")

    result = orchestrator.run_cycle(source)

    assert result.imported == 0
    assert "not found" in result.errors[0]
    assert source.adapter.calls == []


def test_category_of_wrong_type_aborts_cycle(orchestrator, make_source):
    result = orchestrator.run_cycle(make_source([make_tx("a", "100")], income_category="Food"))

    assert "not an income category" in result.errors[0]


def test_cancelled_cycle_commits_nothing_further(orchestrator, make_source, import_ledger):
    cancel = threading.Event()
    cancel.set()
    source = make_source([make_tx("a", "100")])

    result = orchestrator.run_cycle(source, cancel=cancel)

    assert result.cancelled
    assert result.imported == 0
    assert import_ledger.get_watermark("bank") is None


def test_cancel_interrupts_backoff(temp_db, fake_sink, make_source):
    orchestrator = ImportOrchestrator(temp_db, fake_sink, retry=RetryConfig(attempts=3, backoff_seconds=60))
    cancel = threading.Event()
    cancel.set()
    source = make_source([make_tx("a", "100")], failures=[SourceError("timed out", NETWORK)])

    result = orchestrator.run_cycle(source, cancel=cancel)

    assert result.cancelled
    assert len(source.adapter.calls) == 1


class TestCheckBalance:
    def test_matching_balance(self, orchestrator, make_source, usd_wallet):
        orchestrator.run_cycle(make_source([make_tx("a", "100", date=MAR_1)]))

        check = orchestrator.check_balance(make_source(balance="1100"))

        assert check.matches
        assert check.wallet == "Checking"
        assert check.reported == check.stored == check.recomputed == Decimal("1100")
        assert check.difference == Decimal("0")

    def test_differing_balance(self, orchestrator, make_source):
        check = orchestrator.check_balance(make_source(balance="1000.5"))

        assert not check.matches
        assert check.error is None
        assert check.difference == Decimal("0.5")

    def test_stored_balance_drift_is_not_a_match(self, orchestrator, make_source, temp_db, usd_wallet):
        temp_db.set_wallet_balance(usd_wallet.id, Decimal("900"))

        check = orchestrator.check_balance(make_source(balance="900"))

        assert check.recomputed == Decimal("1000")
        assert not check.matches

    def test_source_failure_is_reported(self, orchestrator, make_source):
        source = make_source(failures=[SourceError("timed out", NETWORK) for _ in range(3)])

        check = orchestrator.check_balance(source)

        assert check.error == "timed out"
        assert check.reported is None
        assert check.difference is None
        assert not check.matches

    def test_currency_mismatch_is_reported(self, orchestrator, source_config):
        source = ImportSource(config=source_config, adapter=FakeSource(balance="1000", currency="EUR"))

        check = orchestrator.check_balance(source)

        assert "Source reports EUR" in check.error
        assert not check.matches


class TestCallWithRetry:
    def test_returns_first_success(self):
        assert call_with_retry(lambda: 42, attempts=3, backoff_seconds=0) == 42

    def test_reraises_last_error(self):
        calls = []

        def failing():
            calls.append(1)
            raise SourceError(f"failure {len(calls)}", NETWORK)

        with pytest.raises(SourceError, match="failure 2"):
            call_with_retry(failing, attempts=2, backoff_seconds=0)
        assert len(calls) == 2

    def test_cancel_raises(self):
        cancel = threading.Event()
        cancel.set()

        def failing():
            raise SourceError("timed out", NETWORK)

        with pytest.raises(ImportCancelled):
            call_with_retry(failing, attempts=2, backoff_seconds=30, cancel=cancel)

    def test_other_exceptions_propagate(self):
        def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            call_with_retry(broken, attempts=3, backoff_seconds=0)

    def test_logs_each_retry(self, caplog):
        def failing():
            raise SourceError("timed out", NETWORK)

        with caplog.at_level("WARNING", logger="firedragon.importer.orchestrator"):
            with pytest.raises(SourceError):
                call_with_retry(failing, attempts=2, backoff_seconds=0, description="fetching bank")

        warning, error = caplog.records
        assert warning.args[:3] == (1, "fetching bank", 0)
        assert warning.getMessage() == "Attempt 1 for fetching bank failed, retrying in 0s: timed out"
        assert error.getMessage() == "All 2 attempts for fetching bank failed: timed out"
