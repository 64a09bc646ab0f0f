import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='MediaRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('user_id', models.CharField(help_text='Opaque owner id supplied by the trusted caller', max_length=150)),
                ('object_id', models.CharField(help_text='Generated name, unique within the user namespace', max_length=32)),
                ('extension', models.CharField(help_text='Lowercase extension of the original upload, no dot', max_length=10)),
                ('kind', models.CharField(choices=[('image', 'Image'), ('video', 'Video')], max_length=5)),
                ('state', models.CharField(choices=[('active', 'Active'), ('binned', 'Binned')], default='active', max_length=6)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Media record',
                'verbose_name_plural': 'Media records',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user_id', 'state'], name='media_user_state_idx'),
                    models.Index(fields=['state', 'deleted_at'], name='media_state_deleted_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user_id', 'object_id'), name='media_user_object_unique'),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(('deleted_at__isnull', True), ('state', 'active')),
                            models.Q(('deleted_at__isnull', False), ('state', 'binned')),
                            _connector='OR',
                        ),
                        name='media_deleted_at_matches_state',
                    ),
                ],
            },
        ),
    ]
