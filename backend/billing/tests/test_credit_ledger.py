from decimal import Decimal

import pytest

from billing.errors import InsufficientCredits
from billing.models import CreditTransaction, ModelMultiplier, WorkspaceCredits
from billing.services import credit_ledger
from billing.services.credit_ledger import GenerationUsage
from billing.tests.factories import make_workspace


@pytest.fixture
def workspace():
    return make_workspace()


@pytest.fixture
def double_model():
    ModelMultiplier.objects.update_or_create(model_name="test/double", defaults={"multiplier": Decimal("2")})
    return "test/double"


@pytest.mark.django_db
def test_add_credits_writes_bracketing_transaction(workspace):
    result = credit_ledger.add_workspace_credits(workspace.pk, Decimal("25"), "Bônus")

    assert result["success"] is True
    assert result["balance"] == Decimal("25")

    record = CreditTransaction.objects.get(workspace=workspace)
    assert record.transaction_type == CreditTransaction.TransactionType.CREDIT
    assert record.amount == Decimal("25")
    assert record.balance_before == Decimal("0")
    assert record.balance_after == Decimal("25")

    credits = WorkspaceCredits.objects.get(workspace=workspace)
    assert credits.total_added == Decimal("25")
    assert credits.total_used == Decimal("0")


@pytest.mark.django_db
def test_negative_add_records_debit_and_rejects_overdraft(workspace):
    credit_ledger.add_workspace_credits(workspace.pk, 10)

    ok = credit_ledger.add_workspace_credits(workspace.pk, -4)
    assert ok["success"] is True
    assert ok["balance"] == Decimal("6")
    assert CreditTransaction.objects.filter(transaction_type="debit").count() == 1

    rejected = credit_ledger.add_workspace_credits(workspace.pk, -7)
    assert rejected["success"] is False
    assert rejected["error"] == "insufficient_credits"
    assert CreditTransaction.objects.filter(workspace=workspace).count() == 2
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("6")


@pytest.mark.django_db
def test_zero_amount_and_unknown_workspace_are_rejected(workspace):
    assert credit_ledger.add_workspace_credits(workspace.pk, 0)["error"] == "invalid_amount"
    missing = credit_ledger.add_workspace_credits("6f1c9a52-0000-4000-8000-000000000000", 5)
    assert missing == {"success": False, "error": "workspace_not_found"}


@pytest.mark.django_db
def test_idempotency_key_applies_credit_once(workspace):
    first = credit_ledger.add_workspace_credits(workspace.pk, 50, idempotency_key="grant-1")
    second = credit_ledger.add_workspace_credits(workspace.pk, 50, idempotency_key="grant-1")

    assert first["duplicate"] is False
    assert second["duplicate"] is True
    assert second["transaction_id"] == first["transaction_id"]
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("50")


def miss_first_lookup(lookup):
    calls = []

    def wrapped(*args):
        calls.append(args)
        return None if len(calls) == 1 else lookup(*args)

    return wrapped


@pytest.mark.django_db
def test_concurrent_idempotency_key_returns_committed_transaction(workspace, monkeypatch):
    first = credit_ledger.add_workspace_credits(workspace.pk, 50, idempotency_key="grant-race")
    monkeypatch.setattr(credit_ledger, "_locate_existing_transaction",
                        miss_first_lookup(credit_ledger._locate_existing_transaction))

    second = credit_ledger.add_workspace_credits(workspace.pk, 50, idempotency_key="grant-race")

    assert second["success"] is True
    assert second["duplicate"] is True
    assert second["transaction_id"] == first["transaction_id"]
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("50")


@pytest.mark.django_db
def test_debit_converts_tokens_with_model_multiplier(workspace, double_model):
    credit_ledger.add_workspace_credits(workspace.pk, 10)

    result = credit_ledger.debit_workspace_credits(workspace.pk, double_model, 5000, 2000, 3000, "gen-1")

    assert result["success"] is True
    assert result["credits_debited"] == Decimal("1.0000")
    assert result["balance"] == Decimal("9")

    record = CreditTransaction.objects.get(generation_id="gen-1")
    assert record.model_used == double_model
    assert record.tokens_used == 5000
    assert record.multiplier_snapshot == Decimal("2")
    assert record.tpc_snapshot == 10000


@pytest.mark.django_db
def test_debit_rounds_to_four_places(workspace):
    credit_ledger.add_workspace_credits(workspace.pk, 1)

    result = credit_ledger.debit_workspace_credits(workspace.pk, "unpriced/model", 1234, generation_id="gen-r")

    assert result["credits_debited"] == Decimal("0.1234")
    assert result["balance"] == Decimal("0.8766")


@pytest.mark.django_db
def test_repeated_generation_id_is_not_charged_twice(workspace, double_model):
    credit_ledger.add_workspace_credits(workspace.pk, 10)

    credit_ledger.debit_workspace_credits(workspace.pk, double_model, 5000, generation_id="gen-2")
    repeat = credit_ledger.debit_workspace_credits(workspace.pk, double_model, 5000, generation_id="gen-2")

    assert repeat["duplicate"] is True
    assert CreditTransaction.objects.filter(generation_id="gen-2").count() == 1
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("9")


@pytest.mark.django_db
def test_concurrent_generation_id_is_not_charged_twice(workspace, double_model, monkeypatch):
    credit_ledger.add_workspace_credits(workspace.pk, 10)
    first = credit_ledger.debit_workspace_credits(workspace.pk, double_model, 5000, generation_id="gen-race")
    monkeypatch.setattr(credit_ledger, "_find_generation_debit",
                        miss_first_lookup(credit_ledger._find_generation_debit))

    repeat = credit_ledger.debit_workspace_credits(workspace.pk, double_model, 5000, generation_id="gen-race")

    assert repeat["duplicate"] is True
    assert repeat["transaction_id"] == first["transaction_id"]
    assert CreditTransaction.objects.filter(generation_id="gen-race").count() == 1
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("9")


@pytest.mark.django_db
def test_debit_with_insufficient_balance_reports_context(workspace, double_model):
    credit_ledger.add_workspace_credits(workspace.pk, Decimal("0.5"))

    result = credit_ledger.debit_workspace_credits(workspace.pk, double_model, 5000)

    assert result["success"] is False
    assert result["error"] == "insufficient_credits"
    assert result["current_balance"] == Decimal("0.5")
    assert result["required"] == Decimal("1.0000")
    assert CreditTransaction.objects.filter(transaction_type="debit").count() == 0


@pytest.mark.django_db
def test_check_credits_requires_positive_balance(workspace):
    empty = credit_ledger.check_workspace_credits(workspace.pk, 0)
    assert empty["has_sufficient_credits"] is False

    credit_ledger.add_workspace_credits(workspace.pk, 1)
    funded = credit_ledger.check_workspace_credits(workspace.pk)
    assert funded["has_sufficient_credits"] is True
    assert funded["current_balance"] == Decimal("1")
    assert funded["estimated_debit"] == Decimal("0.5000")


@pytest.mark.django_db
def test_charge_generation_stops_before_generating_when_balance_is_short(workspace):
    calls = []

    def generate():
        calls.append("called")
        return GenerationUsage(input_tokens=100, output_tokens=100)

    with pytest.raises(InsufficientCredits) as excinfo:
        credit_ledger.charge_generation(workspace.pk, generate)

    assert calls == []
    assert excinfo.value.context["current_balance"] == Decimal("0")
    assert not CreditTransaction.objects.filter(workspace=workspace).exists()


@pytest.mark.django_db
def test_charge_generation_debits_reported_usage(workspace):
    credit_ledger.add_workspace_credits(workspace.pk, 5)

    charge = credit_ledger.charge_generation(
        workspace.pk,
        lambda: GenerationUsage(input_tokens=4000, output_tokens=6000, output="copy"),
        generation_id="gen-ok",
    )

    assert charge.usage.output == "copy"
    assert charge.debit["credits_debited"] == Decimal("1.0000")
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("4")


@pytest.mark.django_db
def test_set_balance_routes_delta_through_ledger(workspace):
    credit_ledger.add_workspace_credits(workspace.pk, 10)

    lowered = credit_ledger.set_workspace_credit_balance(workspace.pk, 3, "Correção")
    assert lowered["delta"] == Decimal("-7")
    assert lowered["balance"] == Decimal("3")

    unchanged = credit_ledger.set_workspace_credit_balance(workspace.pk, 3)
    assert unchanged["transaction_id"] is None

    latest = CreditTransaction.objects.filter(workspace=workspace).first()
    assert latest.transaction_type == "debit"
    assert latest.amount == Decimal("7")
    assert CreditTransaction.objects.filter(workspace=workspace).count() == 2

    assert credit_ledger.set_workspace_credit_balance(workspace.pk, -1)["error"] == "invalid_amount"


@pytest.mark.django_db
def test_balance_matches_replayed_transactions(workspace, double_model):
    credit_ledger.add_workspace_credits(workspace.pk, 100)
    credit_ledger.debit_workspace_credits(workspace.pk, double_model, 12345, generation_id="g-a")
    credit_ledger.add_workspace_credits(workspace.pk, -10)
    credit_ledger.set_workspace_credit_balance(workspace.pk, 42)
    credit_ledger.apply_credit_delta(workspace.pk, -500, clamp_to_balance=True, source="test")

    audit = credit_ledger.verify_ledger(workspace.pk)

    assert audit.consistent
    assert audit.balance == Decimal("0")
    assert audit.transaction_count == 5


@pytest.mark.django_db
def test_low_credit_flag_resets_when_balance_recovers(workspace):
    credit_ledger.add_workspace_credits(workspace.pk, 5)
    WorkspaceCredits.objects.filter(workspace=workspace).update(low_credit_alert_shown=True)

    credit_ledger.add_workspace_credits(workspace.pk, 20)

    assert WorkspaceCredits.objects.get(workspace=workspace).low_credit_alert_shown is False


@pytest.mark.django_db
def test_transactions_are_immutable(workspace):
    credit_ledger.add_workspace_credits(workspace.pk, 5)
    record = CreditTransaction.objects.get(workspace=workspace)

    from django.core.exceptions import ValidationError

    record.description = "edited"
    with pytest.raises(ValidationError):
        record.save()
    with pytest.raises(ValidationError):
        record.delete()
