"""initial automation tables

Revision ID: 0001_initial_automation
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial_automation'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'businesses',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('industry', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_businesses_organization_id', 'businesses', ['organization_id'])

    op.create_table(
        'customers',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('business_id', sa.String(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('service_type', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('sms_opt_in', sa.Boolean(), nullable=True),
        sa.Column('sms_opt_out', sa.Boolean(), nullable=True),
        sa.Column('ready_for_automation', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('automation_triggered', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('automation_triggered_at', sa.DateTime(), nullable=True),
        sa.Column('service_completed_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_customers_organization_id', 'customers', ['organization_id'])
    op.create_index('ix_customers_automation_triggered', 'customers', ['automation_triggered'])
    op.create_index('ix_customers_service_completed_date', 'customers', ['service_completed_date'])

    op.create_table(
        'review_requests',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('customer_id', sa.String(), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('business_id', sa.String(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('delivery_method', sa.String(), nullable=False, server_default='EMAIL'),
        sa.Column('status', sa.String(), nullable=False, server_default='SENT'),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_review_requests_customer_id', 'review_requests', ['customer_id'])
    op.create_index('ix_review_requests_created_at', 'review_requests', ['created_at'])

    op.create_table(
        'workflows',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('business_id', sa.String(), sa.ForeignKey('businesses.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('trigger_type', sa.String(50), nullable=False),
        sa.Column('trigger_config', sa.JSON(), nullable=False),
        sa.Column('actions', sa.JSON(), nullable=True),
        sa.Column('conditions', sa.JSON(), nullable=True),
        sa.Column('delivery_method', sa.String(20), nullable=True),
        sa.Column('email_template_type', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('execution_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_workflows_organization_id', 'workflows', ['organization_id'])
    op.create_index('ix_workflows_name', 'workflows', ['name'])
    op.create_index('ix_workflows_trigger_type', 'workflows', ['trigger_type'])

    op.create_table(
        'workflow_executions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('workflow_id', sa.String(), sa.ForeignKey('workflows.id', ondelete='CASCADE'), nullable=False),
        sa.Column('customer_id', sa.String(), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('business_id', sa.String(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('trigger_event', sa.String(100), nullable=False),
        sa.Column('trigger_data', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('current_step', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('results', sa.JSON(), nullable=True),
        sa.Column('execution_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_workflow_executions_organization_id', 'workflow_executions', ['organization_id'])
    op.create_index('ix_workflow_executions_workflow_id', 'workflow_executions', ['workflow_id'])
    op.create_index('ix_workflow_executions_customer_id', 'workflow_executions', ['customer_id'])
    op.create_index('ix_workflow_executions_created_at', 'workflow_executions', ['created_at'])
    op.create_index('ix_workflow_executions_due', 'workflow_executions', ['status', 'scheduled_for'])

    op.create_table(
        'execution_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'execution_id', sa.String(), sa.ForeignKey('workflow_executions.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('workflow_id', sa.String(), nullable=False),
        sa.Column('level', sa.String(10), nullable=False, server_default='INFO'),
        sa.Column('step_number', sa.Integer(), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_execution_logs_execution_id', 'execution_logs', ['execution_id'])
    op.create_index('ix_execution_logs_workflow_id', 'execution_logs', ['workflow_id'])

    op.create_table(
        'workflow_templates',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('trigger_type', sa.String(50), nullable=False),
        sa.Column('template_config', sa.JSON(), nullable=False),
        sa.Column('default_actions', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_system_template', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_workflow_templates_category', 'workflow_templates', ['category'])


def downgrade():
    op.drop_table('workflow_templates')
    op.drop_table('execution_logs')
    op.drop_table('workflow_executions')
    op.drop_table('workflows')
    op.drop_table('review_requests')
    op.drop_table('customers')
    op.drop_table('businesses')
