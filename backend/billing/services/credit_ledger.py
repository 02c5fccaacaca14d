"""Workspace credit ledger: atomic add/debit/check operations paired with audit transactions."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Union

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from billing.errors import (
    CreditWorkspaceNotFound,
    IdempotencyConflict,
    InsufficientCredits,
    InvalidCreditAmount,
    LedgerError,
)
from billing.models import CreditTransaction, ModelMultiplier, WorkspaceCredits
from billing.observability.logging import log_billing_event
from billing.observability.metrics import CREDIT_MUTATION_COUNT, CREDIT_REJECTION_COUNT
from workspace.models import Workspace

FOUR_PLACES = Decimal("0.0001")
ZERO = Decimal("0")

Amount = Union[int, float, str, Decimal]


@dataclass(frozen=True)
class CreditLedgerResult:
    credits: WorkspaceCredits
    transaction: Optional[CreditTransaction]
    created: bool
    delta: Decimal

    @property
    def balance(self) -> Decimal:
        return self.credits.balance


@dataclass(frozen=True)
class CreditCost:
    credits: Decimal
    multiplier: Decimal
    tokens_per_credit: int


@dataclass(frozen=True)
class GenerationUsage:
    """Token usage reported by a generation callable passed to :func:`charge_generation`."""

    input_tokens: int = 0
    output_tokens: int = 0
    output: Any = None

    @property
    def tokens_used(self) -> int:
        return int(self.input_tokens or 0) + int(self.output_tokens or 0)


@dataclass(frozen=True)
class GenerationCharge:
    usage: GenerationUsage
    debit: Dict[str, Any]


@dataclass(frozen=True)
class LedgerAudit:
    balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    broken_links: List[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return self.balance == self.replayed_balance and not self.broken_links


# ---------------------------------------------------------------------------
# Core mutation
# ---------------------------------------------------------------------------


def apply_credit_delta(
    workspace_id,
    amount: Amount,
    description: str = "",
    *,
    user=None,
    idempotency_key: Optional[str] = None,
    source: str = "manual",
    clamp_to_balance: bool = False,
    transaction_fields: Optional[Dict[str, Any]] = None,
) -> CreditLedgerResult:
    """Apply a signed credit delta to a workspace and append the paired transaction.

    Positive amounts are recorded as ``credit`` rows, negative amounts as
    ``debit`` rows. The balance row is locked and incremented server side, so
    callers never supply an absolute balance. With ``clamp_to_balance`` a
    debit larger than the balance only removes what is available instead of
    failing; a zero balance then yields a result without a transaction.
    """

    delta = _to_credit_amount(amount)
    if delta == 0:
        raise InvalidCreditAmount("Credit delta must be non-zero.")

    workspace = _get_workspace(workspace_id)

    try:
        with transaction.atomic():
            credits = _lock_credits(workspace)

            existing = _locate_existing_transaction(idempotency_key)
            if existing:
                _validate_existing(existing, workspace, delta)
                return CreditLedgerResult(credits=credits, transaction=existing, created=False,
                                          delta=existing.signed_amount)

            if delta < 0 and credits.balance + delta < 0:
                if not clamp_to_balance:
                    CREDIT_REJECTION_COUNT.labels(operation=source, reason="insufficient_credits").inc()
                    raise InsufficientCredits(
                        "Workspace credit balance is insufficient for the requested debit.",
                        context={"current_balance": credits.balance, "requested": -delta},
                    )
                delta = -credits.balance
                if delta == 0:
                    return CreditLedgerResult(credits=credits, transaction=None, created=False, delta=ZERO)

            return _write_delta(
                credits=credits,
                delta=delta,
                description=description,
                user=user,
                idempotency_key=idempotency_key,
                source=source,
                transaction_fields=transaction_fields or {},
            )
    except IntegrityError:
        # A concurrent request committed the same idempotency key first.
        existing = _locate_existing_transaction(idempotency_key)
        if not existing:
            raise
        _validate_existing(existing, workspace, delta)
        credits = WorkspaceCredits.objects.get(workspace=workspace)
        return CreditLedgerResult(credits=credits, transaction=existing, created=False, delta=existing.signed_amount)


def _write_delta(
    *,
    credits: WorkspaceCredits,
    delta: Decimal,
    description: str,
    user,
    idempotency_key: Optional[str],
    source: str,
    transaction_fields: Dict[str, Any],
) -> CreditLedgerResult:
    balance_before = credits.balance
    updates: Dict[str, Any] = {"balance": F("balance") + delta, "updated_at": timezone.now()}
    if delta > 0:
        updates["total_added"] = F("total_added") + delta
        tx_type = CreditTransaction.TransactionType.CREDIT
    else:
        updates["total_used"] = F("total_used") - delta
        tx_type = CreditTransaction.TransactionType.DEBIT

    WorkspaceCredits.objects.filter(pk=credits.pk).update(**updates)
    credits.refresh_from_db()

    if credits.low_credit_alert_shown and credits.balance > credits.low_credit_threshold:
        credits.low_credit_alert_shown = False
        credits.save(update_fields=["low_credit_alert_shown", "updated_at"])

    transaction_record = CreditTransaction.objects.create(
        workspace_id=credits.workspace_id,
        user=user,
        transaction_type=tx_type,
        amount=abs(delta),
        balance_before=balance_before,
        balance_after=credits.balance,
        description=description or "",
        idempotency_key=idempotency_key or None,
        **transaction_fields,
    )

    direction = "credit" if delta > 0 else "debit"
    CREDIT_MUTATION_COUNT.labels(direction=direction, source=source).inc()
    log_billing_event(
        message="Workspace credits updated.",
        event=f"credits.{direction}",
        workspace_id=credits.workspace_id,
        actor=getattr(user, "pk", None),
        extra={
            "source": source,
            "amount": str(abs(delta)),
            "balance_before": str(balance_before),
            "balance_after": str(credits.balance),
        },
    )

    return CreditLedgerResult(credits=credits, transaction=transaction_record, created=True, delta=delta)


# ---------------------------------------------------------------------------
# RPC-shaped operations
# ---------------------------------------------------------------------------


def add_workspace_credits(
    workspace_id,
    amount: Amount,
    description: str = "",
    *,
    user=None,
    idempotency_key: Optional[str] = None,
    source: str = "manual",
) -> Dict[str, Any]:
    """Add (or, with a negative amount, remove) credits; returns ``{success, balance}``."""

    try:
        result = apply_credit_delta(
            workspace_id,
            amount,
            description,
            user=user,
            idempotency_key=idempotency_key,
            source=source,
        )
    except (InvalidOperation, ValueError, TypeError):
        return InvalidCreditAmount().as_response()
    except LedgerError as exc:
        return exc.as_response()

    return {
        "success": True,
        "balance": result.balance,
        "delta": result.delta,
        "transaction_id": result.transaction.pk if result.transaction else None,
        "duplicate": not result.created,
    }


def set_workspace_credit_balance(
    workspace_id,
    target_balance: Amount,
    description: str = "",
    *,
    user=None,
) -> Dict[str, Any]:
    """Move a workspace to an absolute balance, computing the delta under the row lock."""

    try:
        target = _to_credit_amount(target_balance)
    except (InvalidOperation, ValueError, TypeError):
        return InvalidCreditAmount().as_response()
    if target < 0:
        return InvalidCreditAmount("Target balance cannot be negative.").as_response()

    try:
        workspace = _get_workspace(workspace_id)
        with transaction.atomic():
            credits = _lock_credits(workspace)
            delta = target - credits.balance
            if delta == 0:
                return {"success": True, "balance": credits.balance, "delta": ZERO, "transaction_id": None}
            result = _write_delta(
                credits=credits,
                delta=delta,
                description=description or "Ajuste manual de créditos",
                user=user,
                idempotency_key=None,
                source="admin_adjustment",
                transaction_fields={},
            )
    except LedgerError as exc:
        return exc.as_response()

    return {
        "success": True,
        "balance": result.balance,
        "delta": result.delta,
        "transaction_id": result.transaction.pk,
    }


def debit_workspace_credits(
    workspace_id,
    model_name: Optional[str],
    tokens_used: int,
    input_tokens: Optional[int] = None,
    output_tokens: Optional[int] = None,
    generation_id: Optional[str] = None,
    user_id=None,
) -> Dict[str, Any]:
    """Convert token usage into credits and debit them from the workspace."""

    try:
        tokens = int(tokens_used or 0)
    except (TypeError, ValueError):
        return InvalidCreditAmount("tokens_used must be an integer.").as_response()
    if tokens < 0:
        return InvalidCreditAmount("tokens_used cannot be negative.").as_response()

    model_name = model_name or settings.BILLING_DEFAULT_MODEL
    cost = calculate_credit_cost(tokens, model_name)

    try:
        workspace = _get_workspace(workspace_id)
    except LedgerError as exc:
        return exc.as_response()

    existing = _find_generation_debit(workspace, generation_id)
    if existing:
        return _duplicate_debit_response(existing)

    if cost.credits == 0:
        balance = WorkspaceCredits.objects.filter(workspace=workspace).values_list("balance", flat=True).first()
        return {"success": True, "credits_debited": ZERO, "balance": balance or ZERO, "transaction_id": None}

    try:
        result = apply_credit_delta(
            workspace.pk,
            -cost.credits,
            f"Geração de IA ({model_name}): {tokens} tokens",
            user=_resolve_user(user_id),
            source="generation",
            transaction_fields={
                "generation_id": generation_id or None,
                "model_used": model_name,
                "tokens_used": tokens,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "multiplier_snapshot": cost.multiplier,
                "tpc_snapshot": cost.tokens_per_credit,
            },
        )
    except IntegrityError:
        # A concurrent debit committed the same generation id first.
        existing = _find_generation_debit(workspace, generation_id)
        if not existing:
            raise
        return _duplicate_debit_response(existing)
    except InsufficientCredits as exc:
        response = exc.as_response()
        response["current_balance"] = exc.context.get("current_balance", ZERO)
        response["required"] = cost.credits
        return response
    except LedgerError as exc:
        return exc.as_response()

    return {
        "success": True,
        "credits_debited": cost.credits,
        "balance": result.balance,
        "transaction_id": result.transaction.pk if result.transaction else None,
    }


def check_workspace_credits(
    workspace_id,
    estimated_tokens: Optional[int] = None,
    model_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Pre-flight check run before any paid generation."""

    if estimated_tokens is None:
        estimated_tokens = settings.BILLING_DEFAULT_ESTIMATED_TOKENS
    model_name = model_name or settings.BILLING_DEFAULT_MODEL
    estimated_debit = calculate_credit_cost(max(int(estimated_tokens), 0), model_name).credits

    try:
        workspace_exists = Workspace.objects.filter(pk=workspace_id).exists()
    except (ValidationError, ValueError, TypeError):
        workspace_exists = False
    if not workspace_exists:
        return {
            "has_sufficient_credits": False,
            "current_balance": ZERO,
            "estimated_debit": estimated_debit,
            "error": CreditWorkspaceNotFound.code.value,
        }

    balance = get_workspace_balance(workspace_id)
    return {
        "has_sufficient_credits": balance >= estimated_debit and balance > 0,
        "current_balance": balance,
        "estimated_debit": estimated_debit,
    }


def charge_generation(
    workspace_id,
    generate: Callable[[], GenerationUsage],
    *,
    model_name: Optional[str] = None,
    estimated_tokens: Optional[int] = None,
    generation_id: Optional[str] = None,
    user_id=None,
) -> GenerationCharge:
    """Run ``generate`` only if the workspace can afford it, then debit the reported usage.

    Raises :class:`InsufficientCredits` before ``generate`` is called when the
    pre-flight check fails, so no provider cost is incurred.
    """

    check = check_workspace_credits(workspace_id, estimated_tokens, model_name)
    if not check["has_sufficient_credits"]:
        CREDIT_REJECTION_COUNT.labels(operation="generation_check", reason="insufficient_credits").inc()
        raise InsufficientCredits(
            context={
                "current_balance": check["current_balance"],
                "estimated_debit": check["estimated_debit"],
            }
        )

    usage = generate()
    debit = debit_workspace_credits(
        workspace_id,
        model_name,
        usage.tokens_used,
        usage.input_tokens,
        usage.output_tokens,
        generation_id,
        user_id,
    )
    return GenerationCharge(usage=usage, debit=debit)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def calculate_credit_cost(tokens: int, model_name: Optional[str] = None) -> CreditCost:
    """``credits = tokens / tokens_per_credit * model multiplier``, rounded to 4 places."""

    tokens_per_credit = int(settings.BILLING_TOKENS_PER_CREDIT)
    multiplier = get_model_multiplier(model_name or settings.BILLING_DEFAULT_MODEL)
    credits = (Decimal(int(tokens)) / Decimal(tokens_per_credit) * multiplier).quantize(
        FOUR_PLACES, rounding=ROUND_HALF_UP
    )
    return CreditCost(credits=credits, multiplier=multiplier, tokens_per_credit=tokens_per_credit)


def get_model_multiplier(model_name: str) -> Decimal:
    multiplier = (
        ModelMultiplier.objects.filter(model_name=model_name, is_active=True)
        .values_list("multiplier", flat=True)
        .first()
    )
    return Decimal(multiplier) if multiplier is not None else Decimal("1")


def get_workspace_balance(workspace_id) -> Decimal:
    balance = WorkspaceCredits.objects.filter(workspace_id=workspace_id).values_list("balance", flat=True).first()
    return balance if balance is not None else ZERO


def verify_ledger(workspace_id) -> LedgerAudit:
    """Replay a workspace's transactions in order and compare against the stored balance."""

    running = ZERO
    broken: List[int] = []
    count = 0
    for record in CreditTransaction.objects.filter(workspace_id=workspace_id).order_by("id"):
        if record.balance_before != running or record.balance_after != running + record.signed_amount:
            broken.append(record.pk)
        running += record.signed_amount
        count += 1

    return LedgerAudit(
        balance=get_workspace_balance(workspace_id),
        replayed_balance=running,
        transaction_count=count,
        broken_links=broken,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _find_generation_debit(workspace: Workspace, generation_id: Optional[str]) -> Optional[CreditTransaction]:
    if not generation_id:
        return None
    return CreditTransaction.objects.filter(workspace=workspace, generation_id=generation_id).first()


def _duplicate_debit_response(record: CreditTransaction) -> Dict[str, Any]:
    return {
        "success": True,
        "credits_debited": record.amount,
        "balance": record.balance_after,
        "transaction_id": record.pk,
        "duplicate": True,
    }


def _locate_existing_transaction(idempotency_key: Optional[str]) -> Optional[CreditTransaction]:
    if not idempotency_key:
        return None
    return CreditTransaction.objects.filter(idempotency_key=idempotency_key).first()


def _validate_existing(record: CreditTransaction, workspace: Workspace, delta: Decimal) -> None:
    if record.workspace_id != workspace.pk:
        raise IdempotencyConflict("Idempotency key belongs to a different workspace.")
    if (record.signed_amount > 0) != (delta > 0):
        raise IdempotencyConflict("Existing transaction direction does not match the request.")


def _lock_credits(workspace: Workspace) -> WorkspaceCredits:
    credits, _ = WorkspaceCredits.objects.get_or_create(workspace=workspace)
    return WorkspaceCredits.objects.select_for_update().get(pk=credits.pk)


def _get_workspace(workspace_id) -> Workspace:
    if isinstance(workspace_id, Workspace):
        return workspace_id
    try:
        return Workspace.objects.get(pk=workspace_id)
    except (Workspace.DoesNotExist, ValidationError, ValueError, TypeError) as exc:
        raise CreditWorkspaceNotFound("Workspace does not exist.") from exc


def _resolve_user(user_id):
    if not user_id:
        return None
    from django.contrib.auth import get_user_model

    return get_user_model().objects.filter(pk=user_id).first()


def _to_credit_amount(value: Amount) -> Decimal:
    decimal_value = Decimal(str(value))
    if not decimal_value.is_finite():
        raise InvalidOperation("Credit amounts must be finite.")
    return decimal_value.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)

