"""
Create default subscription plan data

This command creates the Free, Starter and Pro plans from ``settings.PLAN_CONFIG``
together with the model multipliers and the Ticto integration record.
"""

from django.core.management.base import BaseCommand

from billing.apps import ensure_default_billing_catalog
from billing.models import SubscriptionPlan


class Command(BaseCommand):

    help = 'Create or refresh the default subscription plans'

    def handle(self, *args, **options):
        result = ensure_default_billing_catalog(force=True)

        for name in result['created']:
            self.stdout.write(self.style.SUCCESS(f'✓ Created: {name}'))
        for name in result['updated']:
            self.stdout.write(self.style.SUCCESS(f'✓ Updated plan: {name}'))

        self.stdout.write('\n' + '=' * 50)
        self.stdout.write('Plan setup completed:')
        self.stdout.write(f'  • Created: {len(result["created"])} record(s)')
        self.stdout.write(f'  • Updated: {len(result["updated"])} plan(s)')

        self.stdout.write('\nCurrent plans:')
        for plan in SubscriptionPlan.objects.filter(is_active=True):
            price_display = f"R${plan.monthly_price}/mês" if plan.monthly_price > 0 else "Free"
            projects = plan.max_projects if plan.max_projects is not None else 'unlimited'
            copies = plan.max_copies if plan.max_copies is not None else 'unlimited'
            self.stdout.write(
                f"  • {plan.name}: {price_display} "
                f"({projects} projects, {copies} copies, {plan.credits_per_month} credits/month)"
            )
