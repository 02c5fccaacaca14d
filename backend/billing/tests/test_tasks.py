from datetime import timedelta
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from billing.apps import ensure_default_billing_catalog
from billing.models import ModelMultiplier, SubscriptionPlan, WebhookLog, WorkspaceSubscription
from billing.tasks import cleanup_webhook_logs, replay_webhook_log
from billing.tests.factories import make_gateway, make_offer, make_plan, make_user, make_workspace, ticto_payload

EMAIL = "replay@example.com"


def failed_log(payload, error="UserNotFound"):
    return WebhookLog.objects.create(
        integration_slug="ticto",
        event_type="purchase.approved",
        event_category="payment",
        external_event_id=f"purchase.approved:{payload['order']['hash']}",
        payload=payload,
        status=WebhookLog.Status.FAILED,
        result={"error": error},
    )


@pytest.fixture
def catalog():
    gateway = make_gateway()
    plan = make_plan("replay-plan")
    make_offer(plan, gateway, "OFFER-1")
    return plan


@pytest.mark.django_db
def test_replay_processes_failed_log(catalog):
    log_entry = failed_log(ticto_payload("authorized", email=EMAIL))
    workspace = make_workspace(owner=make_user("replay", email=EMAIL))

    outcome = replay_webhook_log(log_entry.pk)

    assert outcome["status"] == "success"
    log_entry.refresh_from_db()
    assert log_entry.status == WebhookLog.Status.SUCCESS
    assert log_entry.attempts == 2
    assert WorkspaceSubscription.objects.filter(workspace=workspace, status="active").count() == 1


@pytest.mark.django_db
def test_replay_records_repeated_failure(catalog):
    log_entry = failed_log(ticto_payload("authorized", email="ghost@example.com"))

    outcome = replay_webhook_log(log_entry.pk)

    assert outcome == {"status": "failed", "error": "UserNotFound", "log_id": log_entry.pk}
    log_entry.refresh_from_db()
    assert log_entry.status == WebhookLog.Status.FAILED


@pytest.mark.django_db
def test_replay_skips_unauthenticated_and_finished_logs(catalog):
    rejected = failed_log(ticto_payload("authorized", email=EMAIL), error="invalid_webhook_token")
    done = failed_log(ticto_payload("authorized", email=EMAIL, order_hash="ORDER-2"))
    done.status = WebhookLog.Status.SUCCESS
    done.save()

    assert replay_webhook_log(rejected.pk)["reason"] == "invalid_webhook_token"
    assert replay_webhook_log(done.pk)["status"] == "skipped"
    assert replay_webhook_log(999999)["status"] == "missing"


@pytest.mark.django_db
def test_replay_command_dry_run_changes_nothing(catalog):
    log_entry = failed_log(ticto_payload("authorized", email=EMAIL))
    out = StringIO()

    call_command("replay_webhook_log", "--dry-run", stdout=out)

    assert f"Replaying webhook log {log_entry.pk}" in out.getvalue()
    log_entry.refresh_from_db()
    assert log_entry.attempts == 1


@pytest.mark.django_db
def test_cleanup_keeps_failures_and_recent_logs():
    old = timezone.now() - timedelta(days=120)
    stale = WebhookLog.objects.create(integration_slug="ticto", payload={}, status=WebhookLog.Status.SUCCESS)
    failed = WebhookLog.objects.create(integration_slug="ticto", payload={}, status=WebhookLog.Status.FAILED)
    fresh = WebhookLog.objects.create(integration_slug="ticto", payload={}, status=WebhookLog.Status.SUCCESS)
    WebhookLog.objects.filter(pk__in=[stale.pk, failed.pk]).update(created_at=old)

    assert cleanup_webhook_logs(retention_days=90) == {"deleted": 1}
    assert set(WebhookLog.objects.values_list("pk", flat=True)) == {failed.pk, fresh.pk}


@pytest.mark.django_db
def test_default_catalog_is_seeded():
    SubscriptionPlan.objects.update_or_create(slug="starter", defaults={"name": "Starter",
                                                                        "credits_per_month": Decimal("1")})

    result = ensure_default_billing_catalog(force=True)

    assert "starter" in result["updated"]
    assert SubscriptionPlan.objects.get(slug="starter").credits_per_month == Decimal("100")
    assert ModelMultiplier.objects.get(model_name="google/gemini-2.5-pro").multiplier == Decimal("2")
