import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Workspace',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier for the workspace', primary_key=True, serialize=False)),
                ('name', models.CharField(help_text='Workspace name for identification', max_length=200)),
                ('description', models.TextField(blank=True, help_text='Optional description explaining workspace purpose', null=True)),
                ('is_active', models.BooleanField(default=True, help_text='Whether workspace is active and accessible to members')),
                ('created_at', models.DateTimeField(auto_now_add=True, help_text='Timestamp of workspace creation')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp of last workspace modification')),
                ('owner', models.ForeignKey(help_text='User who created and owns this workspace - has all permissions', on_delete=django.db.models.deletion.CASCADE, related_name='owned_workspaces', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Workspace',
                'verbose_name_plural': 'Workspaces',
                'db_table': 'workspace',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['owner', 'is_active'], name='workspace_owner_i_5c1a1e_idx'),
                    models.Index(fields=['created_at'], name='workspace_created_3f1d2b_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Membership',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('role', models.CharField(choices=[('owner', 'Owner'), ('admin', 'Administrator'), ('member', 'Member'), ('viewer', 'Viewer')], help_text='Role determining user permissions within the workspace', max_length=20)),
                ('is_active', models.BooleanField(default=True, help_text='Whether this membership is currently active')),
                ('assigned_at', models.DateTimeField(auto_now_add=True, help_text='When the user was first added to the workspace')),
                ('custom_permissions', models.JSONField(blank=True, default=dict, help_text='Fine-grained permissions override for specific capabilities')),
                ('invited_by', models.ForeignKey(blank=True, help_text='User who sent the workspace invitation', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='sent_workspace_invitations', to=settings.AUTH_USER_MODEL)),
                ('user', models.ForeignKey(help_text='The user who is a member of the workspace', on_delete=django.db.models.deletion.CASCADE, related_name='workspace_memberships', to=settings.AUTH_USER_MODEL)),
                ('workspace', models.ForeignKey(help_text='The workspace this membership belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to='workspace.workspace')),
            ],
            options={
                'verbose_name': 'Workspace Membership',
                'verbose_name_plural': 'Workspace Memberships',
                'db_table': 'workspace_membership',
                'ordering': ['-assigned_at'],
                'indexes': [
                    models.Index(fields=['workspace', 'role', 'is_active'], name='workspace_m_workspa_8d0c3e_idx'),
                    models.Index(fields=['user', 'is_active'], name='workspace_m_user_id_2a7f4c_idx'),
                ],
                'unique_together': {('workspace', 'user')},
            },
        ),
        migrations.AddConstraint(
            model_name='membership',
            constraint=models.UniqueConstraint(condition=models.Q(('role', 'owner')), fields=('workspace',), name='unique_workspace_owner'),
        ),
        migrations.CreateModel(
            name='Project',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=200)),
                ('is_archived', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_projects', to=settings.AUTH_USER_MODEL)),
                ('workspace', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='projects', to='workspace.workspace')),
            ],
            options={
                'db_table': 'workspace_project',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['workspace', 'is_archived'], name='workspace_p_workspa_6e2b91_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Copy',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_copies', to=settings.AUTH_USER_MODEL)),
                ('project', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='copies', to='workspace.project')),
                ('workspace', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='copies', to='workspace.workspace')),
            ],
            options={
                'verbose_name_plural': 'Copies',
                'db_table': 'workspace_copy',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['workspace', 'created_at'], name='workspace_c_workspa_1f9a7d_idx'),
                ],
            },
        ),
    ]
