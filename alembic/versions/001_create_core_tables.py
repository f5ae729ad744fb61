"""Create core tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _document_columns() -> list[sa.Column]:
    """Audit and archive columns shared by every hierarchy document."""
    return [
        sa.Column('created_on', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_on', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('last_modified_by', sa.String(64), nullable=True),
        sa.Column('archived', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('archived_on', sa.DateTime(timezone=True), nullable=True),
        sa.Column('archived_by', sa.String(64), nullable=True),
    ]


def upgrade() -> None:
    """Create users, the containment hierarchy and the audit trail."""
    op.create_table(
        'users',
        sa.Column('username', sa.String(64), primary_key=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('fname', sa.String(255), nullable=False, server_default=''),
        sa.Column('lname', sa.String(255), nullable=False, server_default=''),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('admin', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('custom', postgresql.JSONB, nullable=False, server_default='{}'),
        *_document_columns(),
    )
    op.create_index('idx_users_archived', 'users', ['archived'])

    op.create_table(
        'organizations',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('permissions', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('custom', postgresql.JSONB, nullable=False, server_default='{}'),
        *_document_columns(),
        sa.CheckConstraint('LENGTH(name) > 0', name='organization_name_not_empty')
    )
    op.create_index('idx_organizations_archived', 'organizations', ['archived'])

    op.create_table(
        'projects',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('org_id', sa.String(64), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('visibility', sa.String(16), nullable=False, server_default='private'),
        sa.Column('permissions', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('project_references', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('custom', postgresql.JSONB, nullable=False, server_default='{}'),
        *_document_columns(),
    )
    op.create_index('idx_projects_org_id', 'projects', ['org_id'])
    op.create_index('idx_projects_archived', 'projects', ['archived'])

    op.create_table(
        'branches',
        sa.Column('id', sa.String(192), primary_key=True),
        sa.Column('project_id', sa.String(128), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('source', sa.String(192), nullable=True),
        sa.Column('tag', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('custom', postgresql.JSONB, nullable=False, server_default='{}'),
        *_document_columns(),
    )
    op.create_index('idx_branches_project_id', 'branches', ['project_id'])
    op.create_index('idx_branches_archived', 'branches', ['archived'])

    # parent/source/target are composite ids, not foreign keys
    op.create_table(
        'elements',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('project_id', sa.String(128), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('branch_id', sa.String(192), sa.ForeignKey('branches.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('type', sa.String(255), nullable=False, server_default=''),
        sa.Column('parent', sa.String(255), nullable=True),
        sa.Column('source', sa.String(255), nullable=True),
        sa.Column('target', sa.String(255), nullable=True),
        sa.Column('documentation', sa.Text, nullable=False, server_default=''),
        sa.Column('custom', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('uuid', sa.String(64), nullable=True, unique=True),
        *_document_columns(),
    )
    op.create_index('idx_elements_project_id', 'elements', ['project_id'])
    op.create_index('idx_elements_branch_id', 'elements', ['branch_id'])
    op.create_index('idx_elements_branch_parent', 'elements', ['branch_id', 'parent'])
    op.create_index('idx_elements_parent', 'elements', ['parent'])
    op.create_index('idx_elements_source', 'elements', ['source'])
    op.create_index('idx_elements_target', 'elements', ['target'])
    op.create_index('idx_elements_archived', 'elements', ['archived'])
    op.create_index('idx_elements_custom', 'elements', ['custom'], postgresql_using='gin')

    op.create_table(
        'webhooks',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('org_id', sa.String(64), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('project_id', sa.String(128), sa.ForeignKey('projects.id'), nullable=True),
        sa.Column('branch_id', sa.String(192), sa.ForeignKey('branches.id'), nullable=True),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('type', sa.String(16), nullable=False, server_default='Outgoing'),
        sa.Column('url', sa.String(2048), nullable=True),
        sa.Column('triggers', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('custom', postgresql.JSONB, nullable=False, server_default='{}'),
        *_document_columns(),
    )
    op.create_index('idx_webhooks_org_id', 'webhooks', ['org_id'])
    op.create_index('idx_webhooks_project_id', 'webhooks', ['project_id'])
    op.create_index('idx_webhooks_branch_id', 'webhooks', ['branch_id'])

    op.create_table(
        'artifacts',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('project_id', sa.String(128), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('branch_id', sa.String(192), sa.ForeignKey('branches.id'), nullable=False),
        sa.Column('filename', sa.String(255), nullable=True),
        sa.Column('location', sa.String(1024), nullable=True),
        sa.Column('size', sa.BigInteger, nullable=True),
        sa.Column('custom', postgresql.JSONB, nullable=False, server_default='{}'),
        *_document_columns(),
    )
    op.create_index('idx_artifacts_project_id', 'artifacts', ['project_id'])
    op.create_index('idx_artifacts_branch_id', 'artifacts', ['branch_id'])

    # Audit rows outlive the documents they describe: no foreign keys
    op.create_table(
        'audit_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('org_id', sa.String(64), nullable=True),
        sa.Column('username', sa.String(64), nullable=True),
        sa.Column('action', sa.String(64), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(255), nullable=False),
        sa.Column('diff_json', postgresql.JSONB, nullable=True),
    )
    op.create_index('idx_audit_events_org_id', 'audit_events', ['org_id'])
    op.create_index('idx_audit_events_username', 'audit_events', ['username'])
    op.create_index('idx_audit_events_entity_type', 'audit_events', ['entity_type'])
    op.create_index('idx_audit_events_created_at', 'audit_events', ['created_at'])

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Audit events cannot be modified or deleted';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER prevent_audit_update
        BEFORE UPDATE ON audit_events
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_modification();
    """)
    op.execute("""
        CREATE TRIGGER prevent_audit_delete
        BEFORE DELETE ON audit_events
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_modification();
    """)


def downgrade() -> None:
    """Drop all core tables."""
    op.execute('DROP TRIGGER IF EXISTS prevent_audit_delete ON audit_events')
    op.execute('DROP TRIGGER IF EXISTS prevent_audit_update ON audit_events')
    op.execute('DROP FUNCTION IF EXISTS prevent_audit_modification()')

    op.drop_table('audit_events')
    op.drop_table('artifacts')
    op.drop_table('webhooks')
    op.drop_table('elements')
    op.drop_table('branches')
    op.drop_table('projects')
    op.drop_table('organizations')
    op.drop_table('users')
