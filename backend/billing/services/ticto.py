"""Ticto payment provider helpers: payload access, event normalization and gateway auth."""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from billing.errors import GatewayNotConfigured, InvalidWebhookToken
from billing.models import PaymentGateway

logger = logging.getLogger(__name__)

TICTO_SLUG = "ticto"

TEST_EVENTS = frozenset({"test", "ping", "webhook.test", "validation"})

# Ticto v2 sends a ``status`` instead of an ``event``; map it onto our event vocabulary.
STATUS_EVENT_MAP: Dict[str, Tuple[str, str]] = {
    "authorized": ("purchase.approved", "payment"),
    "waiting_payment": ("payment.pending", "payment"),
    "refused": ("payment.refused", "payment"),
    "bank_slip_created": ("bank_slip.created", "payment"),
    "bank_slip_delayed": ("bank_slip.delayed", "payment"),
    "pix_created": ("pix.created", "payment"),
    "pix_expired": ("pix.expired", "payment"),
    "chargeback": ("payment.chargeback", "refund"),
    "refunded": ("payment.refunded", "refund"),
    "claimed": ("payment.claimed", "refund"),
    "subscription_canceled": ("subscription.cancelled", "subscription"),
    "card_exchanged": ("subscription.card_updated", "subscription"),
    "trial_started": ("subscription.trial_started", "subscription"),
    "trial_ended": ("subscription.trial_ended", "subscription"),
    "uncanceled": ("subscription.resumed", "subscription"),
    "subscription_delayed": ("subscription.past_due", "subscription"),
    "extended": ("subscription.extended", "subscription"),
    "all_charges_paid": ("subscription.ended", "subscription"),
    "abandoned_cart": ("cart.abandoned", "tracking"),
    "trial": ("trial.active", "trial"),
    "close": ("order.closed", "order"),
}

EVENT_CATEGORY_BY_PREFIX: Dict[str, str] = {
    "purchase": "payment",
    "payment": "payment",
    "bank_slip": "payment",
    "pix": "payment",
    "subscription": "subscription",
    "cart": "tracking",
    "trial": "trial",
    "order": "order",
}


@dataclass(frozen=True)
class NormalizedEvent:
    event_type: str
    category: str

    @property
    def is_test(self) -> bool:
        return self.event_type in TEST_EVENTS


def normalize_event(payload: Mapping[str, Any]) -> NormalizedEvent:
    """Resolve the event type and category of a payload; an explicit ``event`` wins over ``status``."""

    event = payload.get("event")
    if isinstance(event, str) and event:
        if event in TEST_EVENTS:
            return NormalizedEvent(event, "test")
        prefix = event.split(".", 1)[0]
        return NormalizedEvent(event, EVENT_CATEGORY_BY_PREFIX.get(prefix, "unknown"))

    status = payload.get("status")
    if isinstance(status, str) and status:
        event_type, category = STATUS_EVENT_MAP.get(status, (status, "unknown"))
        return NormalizedEvent(event_type, category)

    return NormalizedEvent("unknown", "unknown")


class TictoPayload:
    """Read-only accessor over both the flat ``data`` payload and Ticto's v2 order payload."""

    def __init__(self, raw: Mapping[str, Any]):
        self.raw = raw if isinstance(raw, Mapping) else {}
        data = self.raw.get("data")
        self.data: Mapping[str, Any] = data if isinstance(data, Mapping) else {}

    def _section(self, key: str) -> Mapping[str, Any]:
        value = self.raw.get(key)
        return value if isinstance(value, Mapping) else {}

    @property
    def order(self) -> Mapping[str, Any]:
        return self._section("order")

    @property
    def item(self) -> Mapping[str, Any]:
        return self._section("item")

    @property
    def customer(self) -> Mapping[str, Any]:
        customer = self.data.get("customer")
        if isinstance(customer, Mapping):
            return customer
        return self._section("customer")

    @property
    def subscription(self) -> Mapping[str, Any]:
        subscriptions = self.raw.get("subscriptions")
        if isinstance(subscriptions, list) and subscriptions and isinstance(subscriptions[0], Mapping):
            return subscriptions[0]
        return {}

    @property
    def customer_email(self) -> Optional[str]:
        email = self.customer.get("email")
        return str(email).strip() if email else None

    @property
    def customer_name(self) -> str:
        return str(self.customer.get("name") or "")

    @property
    def offer_code(self) -> Optional[str]:
        offer = self._section("offer")
        for candidate in (
            self.data.get("offer_id"),
            self.item.get("offer_code"),
            offer.get("code"),
            offer.get("id"),
        ):
            if candidate not in (None, ""):
                return str(candidate)
        return None

    @property
    def order_hash(self) -> Optional[str]:
        value = self.order.get("hash") or self.order.get("transaction_hash")
        return str(value) if value else None

    @property
    def external_subscription_id(self) -> Optional[str]:
        for candidate in (self.subscription.get("id"), self.data.get("subscription_id"), self.data.get("id"),
                          self.order_hash):
            if candidate not in (None, ""):
                return str(candidate)
        return None

    @property
    def transaction_reference(self) -> Optional[str]:
        """Identifier of the charge itself, used to find the invoice it paid."""
        for candidate in (self.order_hash, self.data.get("transaction_id"), self.data.get("id")):
            if candidate not in (None, ""):
                return str(candidate)
        return None

    @property
    def amount(self) -> Optional[Decimal]:
        """Charged amount in currency units; Ticto v2 reports cents in ``order.paid_amount``."""
        if "paid_amount" in self.order:
            return _to_decimal(self.order.get("paid_amount"), divisor=Decimal("100"))
        if "amount" in self.data:
            return _to_decimal(self.data.get("amount"))
        return None

    @property
    def payment_method(self) -> str:
        return str(self.raw.get("payment_method") or self.data.get("payment_method") or "")

    @property
    def status_date(self) -> datetime:
        return parse_timestamp(self.raw.get("status_date") or self.data.get("created_at")) or timezone.now()

    @property
    def next_charge(self) -> Optional[datetime]:
        return parse_timestamp(self.subscription.get("next_charge"))

    @property
    def is_subscription_cancelled(self) -> bool:
        return bool(self.subscription.get("canceled_at"))

    @property
    def trial_days(self) -> Optional[int]:
        value = self.item.get("trial_days") or self.data.get("trial_days")
        try:
            return int(value) if value else None
        except (TypeError, ValueError):
            return None

    @property
    def query_params(self) -> Mapping[str, Any]:
        params = self.raw.get("query_params") or self.raw.get("url_params")
        return params if isinstance(params, Mapping) else {}

    @property
    def requested_workspace_id(self) -> Optional[str]:
        value = self.query_params.get("workspace_id")
        return str(value) if value else None

    def external_event_id(self, event_type: str) -> Optional[str]:
        """Stable identity of one provider event, or ``None`` when the payload carries no id."""
        reference = None
        for candidate in (self.data.get("id"), self.order_hash, self.raw.get("id")):
            if candidate not in (None, ""):
                reference = str(candidate)
                break
        if reference is None:
            return None
        return f"{event_type}:{reference}"


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = parse_datetime(str(value).replace(" ", "T", 1))
        if parsed is None:
            return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_default_timezone())
    return parsed


def _to_decimal(value: Any, divisor: Decimal = Decimal("1")) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return (Decimal(str(value)) / divisor).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Gateway configuration and authentication
# ---------------------------------------------------------------------------


def load_platform_gateway(slug: str = TICTO_SLUG) -> PaymentGateway:
    """Return the active platform-wide gateway for ``slug`` or raise :class:`GatewayNotConfigured`."""

    gateway = (
        PaymentGateway.objects.select_related("integration")
        .filter(integration__slug=slug, workspace__isnull=True)
        .first()
    )
    if gateway is None or not gateway.is_active or not gateway.integration.is_active:
        raise GatewayNotConfigured(f"Gateway '{slug}' is not configured or inactive.")
    return gateway


def extract_token(headers: Mapping[str, Any]) -> str:
    """Pick the shared secret from ``x-ticto-signature``, falling back to ``authorization``."""

    token = headers.get("x-ticto-signature") or headers.get("X-Ticto-Signature")
    if not token:
        token = headers.get("authorization") or headers.get("Authorization") or ""
    token = str(token).strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token


def validate_token(gateway: PaymentGateway, token: str) -> None:
    expected = gateway.validation_token
    if not expected or not token or not hmac.compare_digest(expected.encode("utf-8"), token.encode("utf-8")):
        logger.warning("Rejected %s webhook with invalid validation token.", gateway.slug)
        raise InvalidWebhookToken("Token de validação inválido.")


def test_ticto_connection(validation_token: Optional[str]) -> Dict[str, Any]:
    """Check that the platform Ticto gateway is active and that ``validation_token`` matches it."""

    try:
        gateway = load_platform_gateway(TICTO_SLUG)
        validate_token(gateway, str(validation_token or "").strip())
    except (GatewayNotConfigured, InvalidWebhookToken) as exc:
        return {"success": False, "error": exc.code.value, "message": str(exc)}

    return {"success": True, "message": "Conexão com a Ticto validada com sucesso."}
