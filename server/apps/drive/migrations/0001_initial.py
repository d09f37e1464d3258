import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import server.apps.drive.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Node',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('kind', models.CharField(choices=[('folder', 'Folder'), ('file', 'File')], max_length=16)),
                ('name', models.CharField(max_length=255)),
                ('storage_key', models.CharField(blank=True, editable=False, help_text='Object key in storage: {owner_id}/uploads/{uuid}.ext', max_length=1024, null=True, unique=True)),
                ('size_bytes', models.BigIntegerField(blank=True, help_text='File size in bytes', null=True)),
                ('mime_type', models.CharField(blank=True, max_length=255, null=True)),
                ('is_starred', models.BooleanField(default=False)),
                ('is_trashed', models.BooleanField(default=False)),
                ('trashed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='drive_nodes', to=settings.AUTH_USER_MODEL)),
                ('parent', models.ForeignKey(blank=True, help_text='Containing folder, empty for the owner root', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='children', to='drive.node')),
            ],
            options={
                'verbose_name': 'Node',
                'verbose_name_plural': 'Nodes',
                'ordering': ['name', 'created_at'],
                'indexes': [
                    models.Index(fields=['owner', 'parent', 'name'], name='drive_node_sibling_idx'),
                    models.Index(fields=['owner', 'is_trashed', 'trashed_at'], name='drive_node_trash_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('is_trashed', False), ('parent__isnull', False)), fields=('owner', 'parent', 'name'), name='drive_node_sibling_name_unique'),
                    models.UniqueConstraint(condition=models.Q(('is_trashed', False), ('parent__isnull', True)), fields=('owner', 'name'), name='drive_node_root_name_unique'),
                    models.CheckConstraint(condition=models.Q(models.Q(('kind', 'folder'), ('mime_type__isnull', True), ('size_bytes__isnull', True), ('storage_key__isnull', True)), models.Q(('kind', 'file'), ('mime_type__isnull', False), ('size_bytes__gte', 0), ('storage_key__isnull', False)), _connector='OR'), name='drive_node_kind_shape'),
                    models.CheckConstraint(condition=models.Q(models.Q(('is_trashed', False), ('trashed_at__isnull', True)), models.Q(('is_trashed', True), ('trashed_at__isnull', False)), _connector='OR'), name='drive_node_trash_state'),
                    models.CheckConstraint(condition=models.Q(('parent', models.F('id')), _negated=True), name='drive_node_not_own_parent'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PendingObjectDeletion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('storage_key', models.CharField(max_length=1024, unique=True)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('last_error', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('last_attempt_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'verbose_name': 'Pending Object Deletion',
                'verbose_name_plural': 'Pending Object Deletions',
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='StorageQuota',
            fields=[
                ('owner', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='storage_quota', serialize=False, to=settings.AUTH_USER_MODEL)),
                ('quota_bytes', models.BigIntegerField(default=server.apps.drive.models._default_quota_bytes, help_text='Storage quota limit in bytes')),
                ('used_bytes', models.BigIntegerField(default=0, help_text='Currently used storage in bytes')),
            ],
            options={
                'verbose_name': 'Storage Quota',
                'verbose_name_plural': 'Storage Quotas',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('quota_bytes__gte', 0)), name='quota_bytes_non_negative'),
                    models.CheckConstraint(condition=models.Q(('used_bytes__gte', 0)), name='used_bytes_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UploadToken',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('token', models.CharField(help_text='Opaque secret handed to the client', max_length=64, unique=True)),
                ('declared_name', models.CharField(max_length=255)),
                ('declared_mime_type', models.CharField(max_length=255)),
                ('max_size_bytes', models.BigIntegerField()),
                ('allowed_mime_types', models.JSONField(default=list)),
                ('storage_key', models.CharField(max_length=1024, unique=True)),
                ('state', models.CharField(choices=[('issued', 'Issued'), ('consumed', 'Consumed'), ('registered', 'Registered'), ('expired', 'Expired'), ('revoked', 'Revoked')], db_index=True, default='issued', max_length=16)),
                ('expires_at', models.DateTimeField(db_index=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('consumed_at', models.DateTimeField(blank=True, null=True)),
                ('node', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='upload_token', to='drive.node')),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='upload_tokens', to=settings.AUTH_USER_MODEL)),
                ('parent', models.ForeignKey(blank=True, help_text='Target folder, empty for the owner root', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='+', to='drive.node')),
            ],
            options={
                'verbose_name': 'Upload Token',
                'verbose_name_plural': 'Upload Tokens',
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('max_size_bytes__gt', 0)), name='upload_token_max_size_positive'),
                ],
            },
        ),
    ]
