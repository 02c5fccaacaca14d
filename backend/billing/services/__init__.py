"""Expose commonly used billing services."""

from .credit_ledger import (
    add_workspace_credits,
    charge_generation,
    check_workspace_credits,
    debit_workspace_credits,
    get_workspace_balance,
    set_workspace_credit_balance,
    verify_ledger,
)
from .plan_change import change_workspace_plan, check_plan_limit, get_active_subscription
