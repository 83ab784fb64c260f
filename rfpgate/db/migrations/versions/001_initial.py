"""initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates the portal tables: companies, users, RFPs, documents, individual and
company NDAs, RFP access requests, the NDA audit trail and notifications.
Statuses are plain strings guarded by CHECK constraints.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


NDA_STATUSES = "'pending', 'signed', 'approved', 'rejected'"


def _nda_columns():
    """Signer, countersigner and rejection columns shared by both NDA tables."""
    return [
        sa.Column('status', sa.String(20), nullable=False, server_default='signed'),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('title', sa.String(255)),
        sa.Column('signature_data', sa.JSON()),
        sa.Column('signed_at', sa.DateTime(timezone=True)),
        sa.Column('ip_address', sa.String(50)),
        sa.Column('user_agent', sa.Text()),
        sa.Column('countersigned_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('countersigned_at', sa.DateTime(timezone=True)),
        sa.Column('countersigner_name', sa.String(255)),
        sa.Column('countersigner_title', sa.String(255)),
        sa.Column('countersignature_data', sa.JSON()),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('rejection_date', sa.DateTime(timezone=True)),
        sa.Column('rejected_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    ]


def upgrade() -> None:
    # Companies
    op.create_table('companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('website', sa.String(255)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_companies_name', 'companies', ['name'])

    # Users
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255)),
        sa.Column('title', sa.String(255)),
        sa.Column('role', sa.String(32), nullable=False, server_default='bidder'),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='SET NULL')),
        sa.Column('company_role', sa.String(32)),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.CheckConstraint("role IN ('admin', 'client_reviewer', 'bidder')", name='ck_users_role'),
        sa.CheckConstraint(
            "company_role IS NULL OR company_role IN ('admin', 'member', 'pending')",
            name='ck_users_company_role',
        ),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_company_id', 'users', ['company_id'])

    # RFPs
    op.create_table('rfps',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('visibility', sa.String(20), nullable=False, server_default='public'),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('closing_date', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.CheckConstraint("visibility IN ('public', 'confidential')", name='ck_rfps_visibility'),
        sa.CheckConstraint("status IN ('draft', 'active', 'closed')", name='ck_rfps_status'),
    )
    op.create_index('ix_rfps_client_id', 'rfps', ['client_id'])

    # Documents
    op.create_table('documents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rfp_id', sa.Integer(), sa.ForeignKey('rfps.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('file_path', sa.String(1000), nullable=False),
        sa.Column('file_type', sa.String(100)),
        sa.Column('requires_nda', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_documents_rfp_id', 'documents', ['rfp_id'])

    # Individual NDAs
    op.create_table('rfp_nda_access',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rfp_id', sa.Integer(), sa.ForeignKey('rfps.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('company', sa.String(255)),
        *_nda_columns(),
        sa.UniqueConstraint('rfp_id', 'user_id', name='uq_rfp_nda_access_rfp_user'),
        sa.CheckConstraint(f"status IN ({NDA_STATUSES})", name='ck_rfp_nda_access_status'),
    )
    op.create_index('ix_rfp_nda_access_rfp_id', 'rfp_nda_access', ['rfp_id'])
    op.create_index('ix_rfp_nda_access_user_id', 'rfp_nda_access', ['user_id'])
    op.create_index('ix_rfp_nda_access_status', 'rfp_nda_access', ['status'])

    # Company NDAs
    op.create_table('company_ndas',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rfp_id', sa.Integer(), sa.ForeignKey('rfps.id', ondelete='CASCADE'), nullable=False),
        sa.Column('signed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        *_nda_columns(),
        sa.UniqueConstraint('company_id', 'rfp_id', name='uq_company_ndas_company_rfp'),
        sa.CheckConstraint(f"status IN ({NDA_STATUSES})", name='ck_company_ndas_status'),
    )
    op.create_index('ix_company_ndas_company_id', 'company_ndas', ['company_id'])
    op.create_index('ix_company_ndas_rfp_id', 'company_ndas', ['rfp_id'])
    op.create_index('ix_company_ndas_status', 'company_ndas', ['status'])

    # RFP access requests
    op.create_table('rfp_access',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rfp_id', sa.Integer(), sa.ForeignKey('rfps.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('decided_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('decided_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('rfp_id', 'user_id', name='uq_rfp_access_rfp_user'),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name='ck_rfp_access_status'),
    )
    op.create_index('ix_rfp_access_rfp_id', 'rfp_access', ['rfp_id'])
    op.create_index('ix_rfp_access_user_id', 'rfp_access', ['user_id'])

    # NDA audit trail
    op.create_table('nda_audit_trail',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nda_id', sa.Integer(), sa.ForeignKey('rfp_nda_access.id', ondelete='CASCADE')),
        sa.Column('company_nda_id', sa.Integer(), sa.ForeignKey('company_ndas.id', ondelete='CASCADE')),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('metadata', sa.JSON()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "(nda_id IS NULL) <> (company_nda_id IS NULL)",
            name='ck_nda_audit_trail_one_target',
        ),
    )
    op.create_index('ix_nda_audit_trail_nda_id', 'nda_audit_trail', ['nda_id'])
    op.create_index('ix_nda_audit_trail_company_nda_id', 'nda_audit_trail', ['company_nda_id'])
    op.create_index('ix_nda_audit_trail_action', 'nda_audit_trail', ['action'])
    op.create_index('ix_nda_audit_trail_created_at', 'nda_audit_trail', ['created_at'])

    # Notifications
    op.create_table('notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('reference_id', sa.Integer()),
        sa.Column('read_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('nda_audit_trail')
    op.drop_table('rfp_access')
    op.drop_table('company_ndas')
    op.drop_table('rfp_nda_access')
    op.drop_table('documents')
    op.drop_table('rfps')
    op.drop_table('users')
    op.drop_table('companies')
