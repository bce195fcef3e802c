from django.db import migrations

import consultations.encryption


class Migration(migrations.Migration):

    dependencies = [
        ('consultations', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='consultation',
            name='doctor_diagnosis',
            field=consultations.encryption.EncryptedJSONField(blank=True, null=True),
        ),
    ]
