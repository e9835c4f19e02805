"""create engagement engine tables

Revision ID: 001_engagement_engine
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_engagement_engine'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('deals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('link_id', sa.String(length=100), nullable=False),
        sa.Column('agent_id', sa.String(length=100), nullable=False),
        sa.Column('client_id', sa.String(length=100), nullable=True),
        sa.Column('deal_name', sa.String(length=200), nullable=False),
        sa.Column('property_ids', sa.JSON(), nullable=False),

        # Pipeline position
        sa.Column('deal_stage', sa.String(length=20), nullable=False),
        sa.Column('deal_status', sa.String(length=20), nullable=False),

        # Engagement
        sa.Column('engagement_score', sa.Integer(), nullable=False),
        sa.Column('score_high_water_mark', sa.Integer(), nullable=False),
        sa.Column('client_temperature', sa.String(length=10), nullable=False),
        sa.Column('session_count', sa.Integer(), nullable=False),
        sa.Column('total_time_spent', sa.Integer(), nullable=False),

        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_deals_link_id'), 'deals', ['link_id'], unique=True)
    op.create_index(op.f('ix_deals_agent_id'), 'deals', ['agent_id'], unique=False)
    op.create_index(op.f('ix_deals_deal_stage'), 'deals', ['deal_stage'], unique=False)
    op.create_index(op.f('ix_deals_deal_status'), 'deals', ['deal_status'], unique=False)
    op.create_index('idx_deals_status_activity', 'deals', ['deal_status', 'last_activity_at'], unique=False)

    op.create_table('browsing_sessions',
        sa.Column('id', sa.String(length=100), nullable=False),
        sa.Column('link_id', sa.String(length=100), nullable=False),
        sa.Column('deal_id', sa.Integer(), nullable=False),
        sa.Column('is_return_visit', sa.Boolean(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_active_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('client_context', sa.JSON(), nullable=True),
        sa.Column('feedback', sa.JSON(), nullable=True),
        sa.Column('final_score', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_browsing_sessions_link_id'), 'browsing_sessions', ['link_id'], unique=False)
    op.create_index(op.f('ix_browsing_sessions_deal_id'), 'browsing_sessions', ['deal_id'], unique=False)
    op.create_index(op.f('ix_browsing_sessions_ended_at'), 'browsing_sessions', ['ended_at'], unique=False)

    op.create_table('interaction_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=100), nullable=False),
        sa.Column('link_id', sa.String(length=100), nullable=False),
        sa.Column('property_id', sa.String(length=100), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('event_metadata', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['browsing_sessions.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_interaction_events_session_id'), 'interaction_events', ['session_id'], unique=False)

    op.create_table('tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deal_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('task_type', sa.String(length=50), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('is_automated', sa.Boolean(), nullable=False),
        sa.Column('trigger_type', sa.String(length=30), nullable=True),
        sa.Column('milestone_tag', sa.String(length=100), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deal_id', 'milestone_tag', name='unique_deal_milestone_task')
    )
    op.create_index(op.f('ix_tasks_deal_id'), 'tasks', ['deal_id'], unique=False)
    op.create_index(op.f('ix_tasks_status'), 'tasks', ['status'], unique=False)

    op.create_table('deal_milestones',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deal_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('reached_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deal_id', 'name', name='unique_deal_milestone')
    )
    op.create_index(op.f('ix_deal_milestones_deal_id'), 'deal_milestones', ['deal_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_deal_milestones_deal_id'), table_name='deal_milestones')
    op.drop_table('deal_milestones')
    op.drop_index(op.f('ix_tasks_status'), table_name='tasks')
    op.drop_index(op.f('ix_tasks_deal_id'), table_name='tasks')
    op.drop_table('tasks')
    op.drop_index(op.f('ix_interaction_events_session_id'), table_name='interaction_events')
    op.drop_table('interaction_events')
    op.drop_index(op.f('ix_browsing_sessions_ended_at'), table_name='browsing_sessions')
    op.drop_index(op.f('ix_browsing_sessions_deal_id'), table_name='browsing_sessions')
    op.drop_index(op.f('ix_browsing_sessions_link_id'), table_name='browsing_sessions')
    op.drop_table('browsing_sessions')
    op.drop_index('idx_deals_status_activity', table_name='deals')
    op.drop_index(op.f('ix_deals_deal_status'), table_name='deals')
    op.drop_index(op.f('ix_deals_deal_stage'), table_name='deals')
    op.drop_index(op.f('ix_deals_agent_id'), table_name='deals')
    op.drop_index(op.f('ix_deals_link_id'), table_name='deals')
    op.drop_table('deals')
