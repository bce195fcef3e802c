import uuid

from django.db import migrations, models

import consultations.encryption


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Consultation',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('patient_id', models.CharField(db_index=True, max_length=64)),
                ('doctor_id', models.CharField(blank=True, max_length=64, null=True)),
                ('session_id', models.CharField(max_length=64, unique=True)),
                ('clinical_session_id', models.CharField(max_length=64, unique=True)),
                ('consultation_type', models.CharField(choices=[('chat', 'Chat'), ('video', 'Video'), ('emergency', 'Emergency')], max_length=20)),
                ('status', models.CharField(choices=[
                    ('draft', 'Draft'),
                    ('payment_pending', 'Payment pending'),
                    ('payment_confirmed', 'Payment confirmed'),
                    ('doctor_assigned', 'Doctor assigned'),
                    ('in_progress', 'In progress'),
                    ('completed', 'Completed'),
                    ('cancelled', 'Cancelled'),
                    ('expired', 'Expired'),
                    ('refunded', 'Refunded'),
                ], default='draft', max_length=30)),
                ('status_history', models.JSONField(blank=True, default=list)),
                ('payment_info', models.JSONField(blank=True, default=dict)),
                ('initial_symptoms', consultations.encryption.EncryptedJSONField(blank=True, null=True)),
                ('ai_diagnosis', consultations.encryption.EncryptedJSONField(blank=True, null=True)),
                ('detailed_symptoms', consultations.encryption.EncryptedJSONField(blank=True, null=True)),
                ('is_active', models.BooleanField(default=True)),
                ('consultation_start_time', models.DateTimeField(blank=True, null=True)),
                ('consultation_end_time', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'consultations',
            },
        ),
        migrations.CreateModel(
            name='PaymentRecord',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('session_id', models.CharField(max_length=64)),
                ('payment_id', models.CharField(max_length=128)),
                ('patient_id', models.CharField(db_index=True, max_length=64)),
                ('gateway_order_id', models.CharField(max_length=128)),
                ('provider', models.CharField(max_length=20)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('completed', 'Completed'), ('failed', 'Failed'), ('refunded', 'Refunded')], default='pending', max_length=20)),
                ('amount', models.PositiveIntegerField()),
                ('currency', models.CharField(default='INR', max_length=3)),
                ('gateway_transaction_id', models.CharField(blank=True, max_length=128, null=True)),
                ('failure_reason', models.TextField(blank=True, null=True)),
                ('result', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'payment_records',
            },
        ),
        migrations.CreateModel(
            name='DoctorShift',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('shift_type', models.CharField(choices=[('morning', 'Morning'), ('evening', 'Evening'), ('night', 'Night')], max_length=20, unique=True)),
                ('doctor_id', models.CharField(max_length=64)),
                ('start_hour', models.PositiveSmallIntegerField()),
                ('end_hour', models.PositiveSmallIntegerField()),
                ('status', models.CharField(choices=[('active', 'Active'), ('inactive', 'Inactive')], default='active', max_length=20)),
                ('effective_from', models.DateTimeField(blank=True, null=True)),
                ('effective_to', models.DateTimeField(blank=True, null=True)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_by', models.CharField(blank=True, default='', max_length=64)),
                ('updated_by', models.CharField(blank=True, default='', max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'doctor_shifts',
            },
        ),
        migrations.AddConstraint(
            model_name='consultation',
            constraint=models.UniqueConstraint(condition=models.Q(('is_active', True)), fields=('patient_id',), name='one_active_consultation_per_patient'),
        ),
        migrations.AddConstraint(
            model_name='paymentrecord',
            constraint=models.UniqueConstraint(fields=('session_id', 'payment_id'), name='unique_payment_per_session'),
        ),
    ]
