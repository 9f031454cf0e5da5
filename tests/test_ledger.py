"""Tests for the ledger engine."""

import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from firedragon.domain.entities import COMPLETED, FAILED, TransactionDraft
from firedragon.domain.errors import (
    CategoryTypeMismatchError,
    ConflictError,
    ExchangeRateError,
    FutureDateError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from firedragon.utils.date_parser import utcnow

DATE = datetime(2024, 3, 1, 12, 0)


def draft(transaction_type, amount, wallet, category, **kwargs):
    return TransactionDraft(
        amount=Decimal(amount),
        date=kwargs.pop("date", DATE),
        transaction_type=transaction_type,
        wallet_id=wallet.id,
        category_id=category.id,
        **kwargs,
    )


def balance(wallet_service, wallet):
    return wallet_service.get_wallet(wallet.id).balance


def test_income_increases_balance_and_records_history(ledger, wallet_service, categories):
    """Income of 50 into a wallet holding 100 leaves 150."""
    wallet_id = wallet_service.create_wallet(name="W", currency="USD", opening_balance=Decimal("100"))
    wallet = wallet_service.get_wallet(wallet_id)

    txn = ledger.create_transaction(draft("income", "50", wallet, categories["Salary"]))

    assert txn.status == COMPLETED
    assert balance(wallet_service, wallet) == Decimal("150")

    history = ledger.get_history(transaction_id=txn.id)
    assert len(history) == 1
    assert history[0].action == "created"
    assert history[0].old_balance == Decimal("100")
    assert history[0].new_balance == Decimal("150")
    assert history[0].changes["new"]["amount"] == str(txn.amount)
    assert "old" not in history[0].changes


def test_expense_exceeding_balance_is_rejected(ledger, wallet_service, categories):
    """Expense of 75 from a wallet holding 50 is rejected and nothing moves."""
    wallet_id = wallet_service.create_wallet(name="W", currency="USD", opening_balance=Decimal("50"))
    wallet = wallet_service.get_wallet(wallet_id)

    with pytest.raises(InsufficientBalanceError, match="Insufficient balance"):
        ledger.create_transaction(draft("expense", "75", wallet, categories["Food"]))

    assert balance(wallet_service, wallet) == Decimal("50")
    assert ledger.list_transactions() == []
    assert ledger.get_history() == []


def test_expense_of_entire_balance_is_allowed(ledger, wallet_service, usd_wallet, categories):
    ledger.create_transaction(draft("expense", "1000", usd_wallet, categories["Housing"]))

    assert balance(wallet_service, usd_wallet) == Decimal("0")


def test_cross_currency_transfer_applies_rate(ledger, wallet_service, categories):
    """Transfer of 100 from USD (200) to EUR (0) at 0.9 leaves 100 and 90."""
    usd_id = wallet_service.create_wallet(name="W1", currency="USD", opening_balance=Decimal("200"))
    eur_id = wallet_service.create_wallet(name="W2", currency="EUR")
    usd = wallet_service.get_wallet(usd_id)
    eur = wallet_service.get_wallet(eur_id)

    txn = ledger.create_transaction(
        draft(
            "transfer",
            "100",
            usd,
            categories["Internal Transfer"],
            dest_wallet_id=eur.id,
            exchange_rate=Decimal("0.9"),
        )
    )

    assert balance(wallet_service, usd) == Decimal("100")
    assert balance(wallet_service, eur) == Decimal("90")

    entry = ledger.get_history(transaction_id=txn.id)[0]
    assert entry.dest_wallet_id == eur.id
    assert entry.old_dest_balance == Decimal("0")
    assert entry.new_dest_balance == Decimal("90")
    assert entry.balance_changes == {
        usd.id: (Decimal("200"), Decimal("100")),
        eur.id: (Decimal("0"), Decimal("90")),
    }


def test_same_currency_transfer_ignores_rate(ledger, wallet_service, usd_wallet, savings_wallet, categories):
    ledger.create_transaction(
        draft(
            "transfer",
            "100",
            usd_wallet,
            categories["Internal Transfer"],
            dest_wallet_id=savings_wallet.id,
            exchange_rate=Decimal("0.5"),
        )
    )

    assert balance(wallet_service, usd_wallet) == Decimal("900")
    assert balance(wallet_service, savings_wallet) == Decimal("100")


def test_cross_currency_transfer_requires_rate(ledger, wallet_service, usd_wallet, eur_wallet, categories):
    with pytest.raises(ExchangeRateError):
        ledger.create_transaction(
            draft("transfer", "100", usd_wallet, categories["Internal Transfer"], dest_wallet_id=eur_wallet.id)
        )

    with pytest.raises(ExchangeRateError):
        ledger.create_transaction(
            draft(
                "transfer",
                "100",
                usd_wallet,
                categories["Internal Transfer"],
                dest_wallet_id=eur_wallet.id,
                exchange_rate=Decimal("0"),
            )
        )

    assert balance(wallet_service, usd_wallet) == Decimal("1000")


def test_transfer_requires_distinct_destination(ledger, usd_wallet, categories):
    with pytest.raises(ValidationError, match="destination wallet"):
        ledger.create_transaction(draft("transfer", "10", usd_wallet, categories["Internal Transfer"]))

    with pytest.raises(ValidationError, match="same source and destination"):
        ledger.create_transaction(
            draft("transfer", "10", usd_wallet, categories["Internal Transfer"], dest_wallet_id=usd_wallet.id)
        )


def test_transfer_exceeding_balance_is_rejected(ledger, wallet_service, usd_wallet, savings_wallet, categories):
    with pytest.raises(InsufficientBalanceError):
        ledger.create_transaction(
            draft(
                "transfer",
                "1000.01",
                usd_wallet,
                categories["Internal Transfer"],
                dest_wallet_id=savings_wallet.id,
            )
        )

    assert balance(wallet_service, usd_wallet) == Decimal("1000")
    assert balance(wallet_service, savings_wallet) == Decimal("0")


def test_destination_only_allowed_on_transfers(ledger, usd_wallet, savings_wallet, categories):
    with pytest.raises(ValidationError, match="only be set on transfer"):
        ledger.create_transaction(
            draft("expense", "10", usd_wallet, categories["Food"], dest_wallet_id=savings_wallet.id)
        )


def test_category_type_must_match(ledger, usd_wallet, categories):
    with pytest.raises(CategoryTypeMismatchError):
        ledger.create_transaction(draft("expense", "10", usd_wallet, categories["Salary"]))


def test_future_date_is_rejected(ledger, usd_wallet, categories):
    with pytest.raises(FutureDateError):
        ledger.create_transaction(
            draft("income", "10", usd_wallet, categories["Salary"], date=utcnow() + timedelta(days=1))
        )


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_amount_must_be_positive(ledger, usd_wallet, categories, amount):
    with pytest.raises(ValidationError, match="greater than 0"):
        ledger.create_transaction(draft("income", amount, usd_wallet, categories["Salary"]))


def test_unknown_type_is_rejected(ledger, usd_wallet, categories):
    with pytest.raises(ValidationError, match="Invalid transaction type"):
        ledger.create_transaction(draft("refund", "10", usd_wallet, categories["Salary"]))


def test_missing_wallet_is_not_found(ledger, categories):
    missing = TransactionDraft(
        amount=Decimal("10"),
        date=DATE,
        transaction_type="income",
        wallet_id=999,
        category_id=categories["Salary"].id,
    )
    with pytest.raises(NotFoundError):
        ledger.create_transaction(missing)


def test_type_is_normalized(ledger, usd_wallet, categories):
    txn = ledger.create_transaction(draft(" Income ", "10", usd_wallet, categories["Salary"]))

    assert txn.transaction_type == "income"


def test_reverse_restores_balances_exactly(ledger, wallet_service, usd_wallet, eur_wallet, categories):
    txn = ledger.create_transaction(
        draft(
            "transfer",
            "33.3333333333",
            usd_wallet,
            categories["Internal Transfer"],
            dest_wallet_id=eur_wallet.id,
            exchange_rate=Decimal("0.3333333333"),
        )
    )
    assert balance(wallet_service, usd_wallet) == Decimal("966.6666666667")

    ledger.reverse(txn)

    assert balance(wallet_service, usd_wallet) == Decimal("1000")
    assert balance(wallet_service, eur_wallet) == Decimal("0")


@pytest.mark.parametrize(
    "opening,amount,expected",
    [
        ("1000000000", "0.000000001", "1000000000.000000001"),
        ("123456789012345678", "0.0000000001", "123456789012345678.0000000001"),
    ],
)
def test_large_balances_keep_every_digit(ledger, wallet_service, categories, opening, amount, expected):
    wallet_id = wallet_service.create_wallet(
        name="Cold", currency="ETH", wallet_type="crypto", opening_balance=Decimal(opening)
    )
    wallet = wallet_service.get_wallet(wallet_id)
    assert wallet.balance == Decimal(opening)

    txn = ledger.create_transaction(draft("income", amount, wallet, categories["Salary"]))

    assert balance(wallet_service, wallet) == Decimal(expected)
    assert ledger.recompute_balance(wallet_id) == Decimal(expected)

    ledger.delete_transaction(txn.id)
    assert balance(wallet_service, wallet) == Decimal(opening)


def test_update_moves_balance_effect(ledger, wallet_service, usd_wallet, categories):
    txn = ledger.create_transaction(draft("expense", "100", usd_wallet, categories["Food"]))

    updated = ledger.update_transaction(txn.id, amount=Decimal("40"), description="Lunch")

    assert updated.amount == Decimal("40")
    assert updated.description == "Lunch"
    assert balance(wallet_service, usd_wallet) == Decimal("960")

    entries = ledger.get_history(transaction_id=txn.id)
    assert [e.action for e in entries] == ["created", "updated"]
    assert entries[1].old_balance == Decimal("900")
    assert entries[1].new_balance == Decimal("960")
    assert entries[1].changes["old"]["amount"] == str(txn.amount)
    assert entries[1].changes["new"]["description"] == "Lunch"


def test_update_may_spend_the_reversed_amount(ledger, wallet_service, usd_wallet, categories):
    """The funds check runs against the balance after the old effect is reversed."""
    txn = ledger.create_transaction(draft("expense", "800", usd_wallet, categories["Food"]))

    ledger.update_transaction(txn.id, amount=Decimal("1000"))

    assert balance(wallet_service, usd_wallet) == Decimal("0")


def test_rejected_update_keeps_old_state(ledger, wallet_service, usd_wallet, savings_wallet, categories):
    txn = ledger.create_transaction(draft("expense", "100", usd_wallet, categories["Food"]))

    with pytest.raises(InsufficientBalanceError):
        ledger.update_transaction(txn.id, wallet_id=savings_wallet.id)
    with pytest.raises(CategoryTypeMismatchError):
        ledger.update_transaction(txn.id, category_id=categories["Salary"].id)

    assert ledger.get_transaction(txn.id).wallet_id == usd_wallet.id
    assert balance(wallet_service, usd_wallet) == Decimal("900")
    assert balance(wallet_service, savings_wallet) == Decimal("0")
    assert len(ledger.get_history(transaction_id=txn.id)) == 1


def test_update_transfer_to_income_drops_destination(
    ledger, wallet_service, usd_wallet, savings_wallet, categories
):
    txn = ledger.create_transaction(
        draft(
            "transfer",
            "100",
            usd_wallet,
            categories["Internal Transfer"],
            dest_wallet_id=savings_wallet.id,
        )
    )

    updated = ledger.update_transaction(
        txn.id, transaction_type="income", category_id=categories["Other Income"].id
    )

    assert updated.dest_wallet_id is None
    assert balance(wallet_service, usd_wallet) == Decimal("1100")
    assert balance(wallet_service, savings_wallet) == Decimal("0")


def test_update_rejects_unknown_fields(ledger, usd_wallet, categories):
    txn = ledger.create_transaction(draft("income", "10", usd_wallet, categories["Salary"]))

    with pytest.raises(ValidationError, match="status"):
        ledger.update_transaction(txn.id, status="failed")


def test_update_missing_transaction(ledger):
    with pytest.raises(NotFoundError):
        ledger.update_transaction(999, amount=Decimal("1"))


def test_delete_reverses_effect(ledger, wallet_service, usd_wallet, savings_wallet, categories):
    txn = ledger.create_transaction(
        draft(
            "transfer",
            "250",
            usd_wallet,
            categories["Internal Transfer"],
            dest_wallet_id=savings_wallet.id,
        )
    )

    ledger.delete_transaction(txn.id)

    assert ledger.get_transaction(txn.id) is None
    assert balance(wallet_service, usd_wallet) == Decimal("1000")
    assert balance(wallet_service, savings_wallet) == Decimal("0")

    entries = ledger.get_history(transaction_id=txn.id)
    assert [e.action for e in entries] == ["created", "deleted"]
    assert entries[1].new_balance == Decimal("1000")
    assert entries[1].new_dest_balance == Decimal("0")
    assert "new" not in entries[1].changes


def test_delete_missing_transaction(ledger):
    with pytest.raises(NotFoundError):
        ledger.delete_transaction(999)


def test_record_failed_transaction_leaves_balances(ledger, wallet_service, usd_wallet, categories):
    failed = ledger.record_failed_transaction(
        draft("expense", "5000", usd_wallet, categories["Food"], external_id="ext-1"),
        "Insufficient balance",
    )

    assert failed.status == FAILED
    assert failed.failure_reason == "Insufficient balance"
    assert balance(wallet_service, usd_wallet) == Decimal("1000")
    assert ledger.get_history() == []

    again = ledger.record_failed_transaction(
        draft("expense", "5000", usd_wallet, categories["Food"], external_id="ext-1"),
        "Still insufficient",
    )
    assert again.id == failed.id
    assert again.failure_reason == "Still insufficient"
    assert len(ledger.list_transactions(status=FAILED)) == 1


def test_updating_failed_transaction_applies_it(ledger, wallet_service, usd_wallet, categories):
    failed = ledger.record_failed_transaction(
        draft("expense", "5000", usd_wallet, categories["Food"]), "Insufficient balance"
    )

    updated = ledger.update_transaction(failed.id, amount=Decimal("500"))

    assert updated.status == COMPLETED
    assert updated.failure_reason is None
    assert balance(wallet_service, usd_wallet) == Decimal("500")


def test_deleting_failed_transaction_leaves_balances(ledger, wallet_service, usd_wallet, categories):
    failed = ledger.record_failed_transaction(
        draft("expense", "5000", usd_wallet, categories["Food"]), "Insufficient balance"
    )

    ledger.delete_transaction(failed.id)

    assert balance(wallet_service, usd_wallet) == Decimal("1000")


def test_balances_match_replayed_transactions(
    ledger, wallet_service, usd_wallet, savings_wallet, eur_wallet, categories
):
    """After a mix of operations every stored balance equals the recomputed one."""
    salary = ledger.create_transaction(draft("income", "1234.56", usd_wallet, categories["Salary"]))
    food = ledger.create_transaction(draft("expense", "78.90", usd_wallet, categories["Food"]))
    move = ledger.create_transaction(
        draft(
            "transfer",
            "300",
            usd_wallet,
            categories["Internal Transfer"],
            dest_wallet_id=savings_wallet.id,
        )
    )
    fx = ledger.create_transaction(
        draft(
            "transfer",
            "120",
            usd_wallet,
            categories["Internal Transfer"],
            dest_wallet_id=eur_wallet.id,
            exchange_rate=Decimal("0.92"),
        )
    )
    ledger.update_transaction(food.id, amount=Decimal("12.34"))
    ledger.update_transaction(move.id, dest_wallet_id=eur_wallet.id, exchange_rate=Decimal("0.9"))
    ledger.delete_transaction(salary.id)
    ledger.update_transaction(fx.id, amount=Decimal("100"))

    for wallet in (usd_wallet, savings_wallet, eur_wallet):
        assert balance(wallet_service, wallet) == ledger.recompute_balance(wallet.id)

    assert balance(wallet_service, usd_wallet) == Decimal("587.66")
    assert balance(wallet_service, savings_wallet) == Decimal("0")
    assert balance(wallet_service, eur_wallet) == Decimal("362")


def test_concurrent_expenses_never_overdraw(ledger, wallet_service, usd_wallet, categories):
    """Concurrent pipelines on one wallet serialize; the balance never goes negative."""
    rejected = []

    def spend():
        for _ in range(10):
            try:
                ledger.create_transaction(draft("expense", "60", usd_wallet, categories["Food"]))
            except InsufficientBalanceError:
                rejected.append(1)

    threads = [threading.Thread(target=spend) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(rejected) == 4
    assert balance(wallet_service, usd_wallet) == Decimal("40")
    assert ledger.recompute_balance(usd_wallet.id) == Decimal("40")


def test_external_id_is_unique(ledger, usd_wallet, categories):
    ledger.create_transaction(draft("income", "10", usd_wallet, categories["Salary"], external_id="ext-1"))

    with pytest.raises(ConflictError, match="ext-1"):
        ledger.create_transaction(draft("income", "20", usd_wallet, categories["Salary"], external_id="ext-1"))
