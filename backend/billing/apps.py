import logging
from decimal import Decimal
from typing import Dict, List

from django.apps import AppConfig
from django.db.models.signals import post_migrate

logger = logging.getLogger(__name__)

_DEFAULTS_INITIALISED = False

PLAN_FIELDS = (
    "name",
    "monthly_price",
    "annual_price",
    "max_projects",
    "max_copies",
    "copy_ai_enabled",
    "credits_per_month",
    "rollover_enabled",
    "rollover_percentage",
    "rollover_days",
)
DECIMAL_FIELDS = {"monthly_price", "annual_price", "credits_per_month"}


def ensure_default_billing_catalog(*, force: bool = False) -> Dict[str, List[str]]:
    """Ensure the default plans, model multipliers and the Ticto integration exist."""
    global _DEFAULTS_INITIALISED
    if _DEFAULTS_INITIALISED and not force:
        return {"created": [], "updated": []}

    from django.conf import settings
    from django.db import OperationalError, ProgrammingError
    from .models import Integration, ModelMultiplier, SubscriptionPlan

    created, updated = [], []
    plan_config = getattr(settings, "PLAN_CONFIG", {}) or {}

    try:
        for order, (slug, config) in enumerate(plan_config.items()):
            defaults = {"display_order": order}
            if "description" in config:
                defaults["description"] = config["description"]
            for field in PLAN_FIELDS:
                if field not in config:
                    continue
                value = config[field]
                defaults[field] = Decimal(str(value)) if field in DECIMAL_FIELDS else value

            plan, was_created = SubscriptionPlan.objects.get_or_create(slug=slug, defaults=defaults)
            if was_created:
                created.append(slug)
                continue

            fields_to_update = []
            for field, expected in defaults.items():
                if getattr(plan, field) != expected:
                    setattr(plan, field, expected)
                    fields_to_update.append(field)

            if fields_to_update:
                plan.save(update_fields=fields_to_update)
                updated.append(slug)

        for model_name, multiplier in (getattr(settings, "MODEL_MULTIPLIERS", {}) or {}).items():
            _, was_created = ModelMultiplier.objects.get_or_create(
                model_name=model_name,
                defaults={"multiplier": Decimal(str(multiplier))},
            )
            if was_created:
                created.append(model_name)

        _, was_created = Integration.objects.get_or_create(
            slug="ticto",
            defaults={"name": "Ticto", "description": "Ticto payment gateway"},
        )
        if was_created:
            created.append("integration:ticto")

    except (OperationalError, ProgrammingError):
        logger.debug("Database not ready for billing catalog initialisation.")
        return {"created": [], "updated": []}

    _DEFAULTS_INITIALISED = True

    if created or updated:
        logger.info("Billing catalog initialisation completed. created=%s updated=%s", created, updated)
    else:
        logger.info("Billing catalog initialisation completed. No changes required.")

    return {"created": created, "updated": updated}


def init_catalog_after_migrate(sender, **kwargs):
    """Called automatically after migrations to initialize the default catalog."""
    logger.info("[Billing] Running ensure_default_billing_catalog() after migrate…")
    ensure_default_billing_catalog(force=True)


class BillingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'billing'

    def ready(self):
        # Connect signal so the catalog is ensured after every migrate run
        post_migrate.connect(init_catalog_after_migrate, sender=self)
