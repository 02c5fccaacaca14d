import uuid
from decimal import Decimal

import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import billing.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('workspace', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Integration',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('slug', models.SlugField(unique=True)),
                ('name', models.CharField(max_length=100)),
                ('description', models.TextField(blank=True)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'billing_integration',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='ModelMultiplier',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('model_name', models.CharField(max_length=100, unique=True)),
                ('multiplier', models.DecimalField(decimal_places=2, default=Decimal('1'), max_digits=6)),
                ('is_active', models.BooleanField(default=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'billing_model_multiplier',
                'ordering': ['model_name'],
            },
        ),
        migrations.CreateModel(
            name='SubscriptionPlan',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=100)),
                ('slug', models.SlugField(unique=True)),
                ('description', models.TextField(blank=True)),
                ('monthly_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('annual_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('max_projects', models.PositiveIntegerField(blank=True, help_text='Maximum number of active projects; empty means unlimited.', null=True)),
                ('max_copies', models.PositiveIntegerField(blank=True, help_text='Maximum number of copies; empty means unlimited.', null=True)),
                ('copy_ai_enabled', models.BooleanField(default=False)),
                ('credits_per_month', models.DecimalField(decimal_places=4, default=Decimal('0'), max_digits=14)),
                ('rollover_enabled', models.BooleanField(default=False)),
                ('rollover_percentage', models.PositiveSmallIntegerField(default=0)),
                ('rollover_days', models.PositiveSmallIntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('display_order', models.PositiveSmallIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Subscription plan',
                'verbose_name_plural': 'Subscription plans',
                'db_table': 'billing_subscription_plan',
                'ordering': ['display_order', 'monthly_price'],
            },
        ),
        migrations.CreateModel(
            name='PaymentGateway',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(default=False)),
                ('config', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('integration', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='gateways', to='billing.integration')),
                ('workspace', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='payment_gateways', to='workspace.workspace')),
            ],
            options={
                'db_table': 'billing_payment_gateway',
                'ordering': ['-created_at'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('workspace__isnull', True)), fields=('integration',), name='unique_platform_gateway_per_integration'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PlanOffer',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('gateway_offer_id', models.CharField(blank=True, max_length=255)),
                ('price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('billing_period_unit', models.CharField(choices=[('days', 'Days'), ('months', 'Months'), ('years', 'Years'), ('lifetime', 'Lifetime')], default='months', max_length=10)),
                ('billing_period_value', models.PositiveIntegerField(default=1)),
                ('checkout_url', models.URLField(blank=True)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('payment_gateway', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='offers', to='billing.paymentgateway')),
                ('plan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offers', to='billing.subscriptionplan')),
            ],
            options={
                'db_table': 'billing_plan_offer',
                'ordering': ['plan', 'price'],
                'indexes': [
                    models.Index(fields=['gateway_offer_id'], name='plan_offer_gateway_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PlanOfferGatewayId',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('gateway_offer_id', models.CharField(max_length=255, unique=True)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('plan_offer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='gateway_ids', to='billing.planoffer')),
            ],
            options={
                'db_table': 'billing_plan_offer_gateway_id',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='WorkspaceSubscription',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('billing_cycle', models.CharField(choices=[('monthly', 'Monthly'), ('annual', 'Annual')], default='monthly', max_length=10)),
                ('status', models.CharField(choices=[('active', 'Active'), ('trialing', 'Trialing'), ('past_due', 'Past due'), ('pending_payment', 'Pending payment'), ('cancelled', 'Cancelled'), ('expired', 'Expired')], default='active', max_length=20)),
                ('current_max_projects', models.PositiveIntegerField(blank=True, null=True)),
                ('current_max_copies', models.PositiveIntegerField(blank=True, null=True)),
                ('current_copy_ai_enabled', models.BooleanField(default=False)),
                ('started_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('current_period_start', models.DateTimeField(default=django.utils.timezone.now)),
                ('current_period_end', models.DateTimeField(blank=True, null=True)),
                ('payment_gateway', models.CharField(blank=True, max_length=50)),
                ('external_subscription_id', models.CharField(blank=True, max_length=255, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('plan', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='subscriptions', to='billing.subscriptionplan')),
                ('plan_offer', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='subscriptions', to='billing.planoffer')),
                ('workspace', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subscriptions', to='workspace.workspace')),
            ],
            options={
                'verbose_name': 'Workspace subscription',
                'verbose_name_plural': 'Workspace subscriptions',
                'db_table': 'billing_workspace_subscription',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['payment_gateway', 'external_subscription_id'], name='subscription_external_idx'),
                    models.Index(fields=['workspace', 'status'], name='subscription_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'active')), fields=('workspace',), name='unique_active_subscription_per_workspace'),
                ],
            },
        ),
        migrations.CreateModel(
            name='WorkspaceCredits',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('balance', models.DecimalField(decimal_places=4, default=Decimal('0'), max_digits=14)),
                ('total_added', models.DecimalField(decimal_places=4, default=Decimal('0'), max_digits=14)),
                ('total_used', models.DecimalField(decimal_places=4, default=Decimal('0'), max_digits=14)),
                ('low_credit_threshold', models.DecimalField(decimal_places=4, default=Decimal('10'), max_digits=14)),
                ('low_credit_alert_shown', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('workspace', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='credits', to='workspace.workspace')),
            ],
            options={
                'verbose_name': 'Workspace credits',
                'verbose_name_plural': 'Workspace credits',
                'db_table': 'billing_workspace_credits',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('balance__gte', 0)), name='workspace_credits_non_negative_balance'),
                    models.CheckConstraint(condition=models.Q(('total_added__gte', 0)), name='workspace_credits_non_negative_added'),
                    models.CheckConstraint(condition=models.Q(('total_used__gte', 0)), name='workspace_credits_non_negative_used'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CreditTransaction',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('transaction_type', models.CharField(choices=[('credit', 'Credit'), ('debit', 'Debit')], max_length=10)),
                ('amount', models.DecimalField(decimal_places=4, max_digits=14)),
                ('balance_before', models.DecimalField(decimal_places=4, max_digits=14)),
                ('balance_after', models.DecimalField(decimal_places=4, max_digits=14)),
                ('description', models.TextField(blank=True)),
                ('idempotency_key', models.CharField(blank=True, max_length=255, null=True)),
                ('generation_id', models.CharField(blank=True, max_length=255, null=True)),
                ('model_used', models.CharField(blank=True, max_length=100)),
                ('tokens_used', models.PositiveIntegerField(blank=True, null=True)),
                ('input_tokens', models.PositiveIntegerField(blank=True, null=True)),
                ('output_tokens', models.PositiveIntegerField(blank=True, null=True)),
                ('multiplier_snapshot', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('tpc_snapshot', models.PositiveIntegerField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(blank=True, help_text='Actor; empty for system-triggered movements.', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='credit_transactions', to=settings.AUTH_USER_MODEL)),
                ('workspace', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='credit_transactions', to='workspace.workspace')),
            ],
            options={
                'verbose_name': 'Credit transaction',
                'verbose_name_plural': 'Credit transactions',
                'db_table': 'billing_credit_transaction',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['workspace', 'created_at'], name='credit_tx_workspace_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='credit_transaction_positive_amount'),
                    models.UniqueConstraint(condition=models.Q(('idempotency_key__isnull', False)), fields=('idempotency_key',), name='unique_credit_transaction_idempotency'),
                    models.UniqueConstraint(condition=models.Q(('generation_id__isnull', False)), fields=('workspace', 'generation_id'), name='unique_credit_transaction_generation'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Invoice',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('invoice_number', models.CharField(max_length=32, unique=True)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('currency', models.CharField(default=billing.models._default_currency, max_length=10)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('paid', 'Paid'), ('refunded', 'Refunded'), ('chargeback', 'Chargeback'), ('cancelled', 'Cancelled')], default='pending', max_length=20)),
                ('due_date', models.DateTimeField(blank=True, null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('payment_method', models.CharField(blank=True, max_length=50)),
                ('external_transaction_id', models.CharField(blank=True, max_length=255, null=True)),
                ('line_items', models.JSONField(blank=True, default=list)),
                ('metadata', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('subscription', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='invoices', to='billing.workspacesubscription')),
                ('workspace', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='invoices', to='workspace.workspace')),
            ],
            options={
                'db_table': 'billing_invoice',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['external_transaction_id'], name='invoice_external_tx_idx'),
                    models.Index(fields=['workspace', 'status'], name='invoice_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='WebhookLog',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('integration_slug', models.CharField(max_length=50)),
                ('event_type', models.CharField(blank=True, max_length=100)),
                ('event_category', models.CharField(blank=True, max_length=50)),
                ('external_event_id', models.CharField(blank=True, help_text='Provider-side identity of the delivery used for de-duplication.', max_length=255, null=True)),
                ('payload', models.JSONField(blank=True, null=True)),
                ('headers', models.JSONField(blank=True, default=dict)),
                ('status', models.CharField(choices=[('received', 'Received'), ('processing', 'Processing'), ('success', 'Success'), ('failed', 'Failed')], default='received', max_length=20)),
                ('error_message', models.TextField(blank=True)),
                ('result', models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True)),
                ('attempts', models.PositiveIntegerField(default=1)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('gateway', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='webhook_logs', to='billing.paymentgateway')),
                ('workspace', models.ForeignKey(blank=True, help_text='Workspace resolved for this event when available.', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='webhook_logs', to='workspace.workspace')),
            ],
            options={
                'verbose_name': 'Webhook log',
                'verbose_name_plural': 'Webhook logs',
                'db_table': 'billing_webhook_log',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='webhook_log_status_idx'),
                    models.Index(fields=['event_type'], name='webhook_log_type_idx'),
                    models.Index(fields=['created_at'], name='webhook_log_created_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('external_event_id__isnull', False)), fields=('integration_slug', 'external_event_id'), name='unique_webhook_log_external_event'),
                ],
            },
        ),
    ]
