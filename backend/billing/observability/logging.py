"""Structured logging helper for billing flows."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("billing")


def log_billing_event(*, message: str, event: Optional[str] = None, workspace_id: Optional[Any] = None,
                      actor: Optional[Any] = None, level: int = logging.INFO,
                      extra: Optional[Dict[str, Any]] = None) -> None:
    """Emit one dict-shaped record on the ``billing`` logger.

    ``workspace_id`` and ``actor`` are stringified so UUIDs and user pks log uniformly.
    """
    payload: Dict[str, Any] = {"message": message}
    if event:
        payload["event"] = event
    if workspace_id:
        payload["workspace_id"] = str(workspace_id)
    if actor:
        payload["actor"] = str(actor)
    if extra:
        payload.update(extra)
    logger.log(level, payload)
