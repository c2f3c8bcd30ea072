from django.conf import settings
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Listing',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=200)),
                ('status', models.CharField(choices=[('active', 'Active'), ('inactive', 'Inactive')], default='active', max_length=10)),
                ('is_available', models.BooleanField(default=True)),
                ('rto_available', models.BooleanField(default=False)),
                ('rto_purchase_price', models.PositiveBigIntegerField(blank=True, null=True)),
                ('rto_rental_credit_percent', models.PositiveSmallIntegerField(default=50, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(100)])),
                ('rto_min_payments', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('rto_max_payments', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='listings', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='PaymentAccount',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('processor_customer_id', models.CharField(blank=True, max_length=255)),
                ('payout_account_id', models.CharField(blank=True, max_length=255)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='payment_account', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='Contract',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('purchase_price', models.PositiveBigIntegerField()),
                ('total_payments', models.PositiveSmallIntegerField()),
                ('payment_amount', models.PositiveBigIntegerField()),
                ('rental_credit_percent', models.PositiveSmallIntegerField()),
                ('cadence', models.CharField(choices=[('weekly', 'Weekly'), ('biweekly', 'Biweekly'), ('monthly', 'Monthly')], default='monthly', max_length=10)),
                ('first_payment_date', models.DateField()),
                ('payments_completed', models.PositiveSmallIntegerField(default=0)),
                ('equity_accumulated', models.PositiveBigIntegerField(default=0)),
                ('rental_paid', models.PositiveBigIntegerField(default=0)),
                ('next_payment_date', models.DateField(blank=True, null=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('active', 'Active'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='pending', max_length=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('terms_accepted_at', models.DateTimeField(blank=True, null=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_by', models.CharField(blank=True, choices=[('borrower', 'Borrower'), ('lender', 'Lender')], max_length=10)),
                ('cancellation_reason', models.TextField(blank=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('borrower', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='rto_borrowed', to=settings.AUTH_USER_MODEL)),
                ('lender', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='rto_lent', to=settings.AUTH_USER_MODEL)),
                ('listing', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='rto_contracts', to='rto.listing')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['status'], name='rto_contract_status_idx'),
                    models.Index(fields=['next_payment_date'], name='rto_contract_next_due_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('equity_accumulated__lte', models.F('purchase_price'))), name='rto_equity_within_price'),
                    models.CheckConstraint(condition=models.Q(('payments_completed__lte', models.F('total_payments'))), name='rto_completed_within_total'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('payment_number', models.PositiveSmallIntegerField()),
                ('total_amount', models.PositiveBigIntegerField()),
                ('equity_portion', models.PositiveBigIntegerField()),
                ('rental_portion', models.PositiveBigIntegerField()),
                ('platform_fee', models.PositiveBigIntegerField()),
                ('lender_payout', models.PositiveBigIntegerField()),
                ('due_date', models.DateField()),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('capturing', 'Capturing'), ('completed', 'Completed'), ('failed', 'Failed')], default='pending', max_length=10)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('idempotency_key', models.CharField(max_length=100, unique=True)),
                ('claimed_at', models.DateTimeField(blank=True, null=True)),
                ('capture_ref', models.CharField(blank=True, max_length=255)),
                ('transfer_ref', models.CharField(blank=True, max_length=255)),
                ('payout_status', models.CharField(blank=True, choices=[('transferred', 'Transferred'), ('failed', 'Failed'), ('no_destination', 'No destination')], max_length=15, null=True)),
                ('payout_error', models.TextField(blank=True)),
                ('failure_reason', models.TextField(blank=True)),
                ('retry_count', models.PositiveIntegerField(default=0)),
                ('last_retry_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('contract', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='rto.contract')),
            ],
            options={
                'ordering': ['payment_number'],
                'indexes': [models.Index(fields=['status'], name='rto_payment_status_idx')],
                'unique_together': {('contract', 'payment_number')},
            },
        ),
    ]
