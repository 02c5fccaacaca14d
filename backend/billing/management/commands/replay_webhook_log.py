"""Management command to replay failed Ticto webhook deliveries."""
from __future__ import annotations

from typing import Iterable, Optional

from django.core.management.base import BaseCommand

from billing.models import WebhookLog
from billing.tasks import REPLAYABLE_STATUSES, replay_webhook_log


class Command(BaseCommand):
    help = "Replay stored webhook logs that did not complete through the normal processing pipeline."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--log-id",
            dest="log_ids",
            action="append",
            type=int,
            help="Replay only the specified webhook log id. Can be supplied multiple times.",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of logs to replay in this run.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Preview logs that would be replayed without performing any changes.",
        )
        parser.add_argument(
            "--async",
            dest="run_async",
            action="store_true",
            help="Queue the replays on the billing Celery queue instead of running them inline.",
        )

    def handle(self, *args, **options) -> None:
        log_ids: Optional[Iterable[int]] = options.get("log_ids")
        limit: Optional[int] = options.get("limit")
        dry_run: bool = options.get("dry_run")
        run_async: bool = options.get("run_async")

        queryset = WebhookLog.objects.filter(status__in=REPLAYABLE_STATUSES).order_by("created_at")
        if log_ids:
            queryset = queryset.filter(pk__in=list(log_ids))

        if limit is not None:
            queryset = queryset[:limit]

        logs = list(queryset)
        if not logs:
            self.stdout.write(self.style.WARNING("No webhook logs matched the requested filters."))
            return

        processed = 0
        failed = 0

        for log_entry in logs:
            self.stdout.write(f"Replaying webhook log {log_entry.pk} ({log_entry.event_type})")
            if dry_run:
                continue

            if run_async:
                replay_webhook_log.delay(log_entry.pk)
                processed += 1
                continue

            outcome = replay_webhook_log(log_entry.pk)
            if outcome.get("status") == "success":
                processed += 1
            else:
                failed += 1
                self.stdout.write(self.style.ERROR(f"  failed: {outcome.get('error') or outcome.get('reason')}"))

        if dry_run:
            self.stdout.write(self.style.SUCCESS(f"Dry run complete. {len(logs)} log(s) would be replayed."))
            return

        self.stdout.write(self.style.SUCCESS(f"Replay complete. processed={processed} failed={failed}"))
