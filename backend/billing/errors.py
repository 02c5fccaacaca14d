"""Closed set of billing error codes and the exception hierarchy that carries them."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class BillingErrorCode(str, Enum):
    """Discriminators returned to clients in ``{"success": false, "error": ...}``."""

    UNAUTHORIZED = "unauthorized"
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    PLAN_NOT_FOUND = "plan_not_found"
    PROJECTS_LIMIT_EXCEEDED = "projects_limit_exceeded"
    COPIES_LIMIT_EXCEEDED = "copies_limit_exceeded"
    OFFER_NOT_MAPPED = "OfferNotMapped"
    USER_NOT_FOUND = "UserNotFound"
    WORKSPACE_NOT_FOUND = "WorkspaceNotFound"
    PLAN_RECORD_NOT_FOUND = "PlanNotFound"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    INVALID_AMOUNT = "invalid_amount"
    WORKSPACE_MISSING = "workspace_not_found"
    IDEMPOTENCY_CONFLICT = "idempotency_conflict"
    GATEWAY_NOT_CONFIGURED = "gateway_not_configured"
    INVALID_WEBHOOK_TOKEN = "invalid_webhook_token"
    WEBHOOK_DEADLINE_EXCEEDED = "webhook_deadline_exceeded"
    WEBHOOK_IN_PROGRESS = "webhook_in_progress"
    UNKNOWN = "unknown_error"

    @property
    def message(self) -> str:
        return ERROR_MESSAGES.get(self, ERROR_MESSAGES[BillingErrorCode.UNKNOWN])


ERROR_MESSAGES: Dict[BillingErrorCode, str] = {
    BillingErrorCode.UNAUTHORIZED: "Você não tem permissão para alterar o plano deste workspace.",
    BillingErrorCode.NO_ACTIVE_SUBSCRIPTION: "Nenhuma assinatura ativa encontrada para este workspace.",
    BillingErrorCode.PLAN_NOT_FOUND: "Plano selecionado não encontrado ou não está ativo.",
    BillingErrorCode.PROJECTS_LIMIT_EXCEEDED: "O plano selecionado permite menos projetos do que o workspace possui.",
    BillingErrorCode.COPIES_LIMIT_EXCEEDED: "O plano selecionado permite menos copies do que o workspace possui.",
    BillingErrorCode.OFFER_NOT_MAPPED: "Oferta não mapeada para nenhum plano.",
    BillingErrorCode.USER_NOT_FOUND: "Usuário não encontrado para o email informado.",
    BillingErrorCode.WORKSPACE_NOT_FOUND: "Workspace do usuário não encontrado.",
    BillingErrorCode.PLAN_RECORD_NOT_FOUND: "Plano não encontrado.",
    BillingErrorCode.INSUFFICIENT_CREDITS: "Créditos insuficientes.",
    BillingErrorCode.INVALID_AMOUNT: "Valor inválido.",
    BillingErrorCode.WORKSPACE_MISSING: "Workspace não encontrado.",
    BillingErrorCode.IDEMPOTENCY_CONFLICT: "Chave de idempotência já utilizada com outros parâmetros.",
    BillingErrorCode.GATEWAY_NOT_CONFIGURED: "Gateway de pagamento não configurado ou inativo.",
    BillingErrorCode.INVALID_WEBHOOK_TOKEN: "Token de validação inválido.",
    BillingErrorCode.WEBHOOK_DEADLINE_EXCEEDED: "Tempo limite de processamento excedido.",
    BillingErrorCode.WEBHOOK_IN_PROGRESS: "Evento ainda em processamento; tente novamente.",
    BillingErrorCode.UNKNOWN: "Erro desconhecido",
}


class BillingError(Exception):
    """Base exception carrying a :class:`BillingErrorCode` and optional response context."""

    code: BillingErrorCode = BillingErrorCode.UNKNOWN

    def __init__(self, message: Optional[str] = None, *, code: Optional[BillingErrorCode] = None,
                 context: Optional[Dict[str, Any]] = None):
        if code is not None:
            self.code = code
        self.context = context or {}
        super().__init__(message or self.code.message)

    def as_response(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.code.value}
        payload.update(self.context)
        return payload


class LedgerError(BillingError):
    """Credit ledger failures."""


class InsufficientCredits(LedgerError):
    code = BillingErrorCode.INSUFFICIENT_CREDITS


class InvalidCreditAmount(LedgerError):
    code = BillingErrorCode.INVALID_AMOUNT


class CreditWorkspaceNotFound(LedgerError):
    code = BillingErrorCode.WORKSPACE_MISSING


class IdempotencyConflict(LedgerError):
    code = BillingErrorCode.IDEMPOTENCY_CONFLICT


class ReconciliationError(BillingError):
    """Raised when a payment event cannot be turned into subscription state."""


class OfferNotMapped(ReconciliationError):
    code = BillingErrorCode.OFFER_NOT_MAPPED


class PlanNotFound(ReconciliationError):
    code = BillingErrorCode.PLAN_RECORD_NOT_FOUND


class UserNotFound(ReconciliationError):
    code = BillingErrorCode.USER_NOT_FOUND


class WorkspaceNotFound(ReconciliationError):
    code = BillingErrorCode.WORKSPACE_NOT_FOUND


class WebhookProcessingError(BillingError):
    """Failures of the webhook gateway itself (configuration, authentication, deadline)."""


class GatewayNotConfigured(WebhookProcessingError):
    code = BillingErrorCode.GATEWAY_NOT_CONFIGURED


class InvalidWebhookToken(WebhookProcessingError):
    code = BillingErrorCode.INVALID_WEBHOOK_TOKEN


class WebhookDeadlineExceeded(WebhookProcessingError):
    code = BillingErrorCode.WEBHOOK_DEADLINE_EXCEEDED


class WebhookInProgress(WebhookProcessingError):
    code = BillingErrorCode.WEBHOOK_IN_PROGRESS


class PlanChangeError(BillingError):
    """Plan change rejected by the authorizer; state is left untouched."""
