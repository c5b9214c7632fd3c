from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='FetchEvent',
            fields=[
                (
                    'id',
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name='ID'
                    ),
                ),
                ('requester_id', models.CharField(db_index=True, max_length=64)),
                ('url', models.URLField(max_length=2048)),
                ('fingerprint', models.CharField(db_index=True, max_length=64)),
                ('origin', models.CharField(max_length=32)),
                ('success', models.BooleanField(default=False)),
                ('error', models.CharField(blank=True, max_length=32, null=True)),
                ('size_bytes', models.BigIntegerField(blank=True, null=True)),
                ('duration_ms', models.IntegerField(default=0)),
                ('cache_hit', models.BooleanField(default=False)),
                (
                    'delivery',
                    models.CharField(
                        blank=True,
                        choices=[('inband', 'In-band'), ('link', 'Link')],
                        max_length=10,
                        null=True,
                    ),
                ),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]
