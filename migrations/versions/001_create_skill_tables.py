"""Create skill lifecycle tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create skills, skill_recommendations, judge_insights and skill_buckets."""

    op.create_table(
        'skills',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('domain', sa.String(length=32), nullable=False),
        sa.Column('skill_type', sa.String(length=16), nullable=False),
        sa.Column('bucket_type', sa.String(length=16), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('ttl_days', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('source_decision_ids', JSONB, nullable=False, server_default='[]'),
        sa.Column('merged_from_skill_ids', JSONB, nullable=False, server_default='[]'),
        sa.Column('merged_into_id', sa.String(length=36), nullable=True),
        sa.Column('theme_key', sa.String(length=64), nullable=True),
        sa.Column('times_applied', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('times_successful', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_rate', sa.Float(), nullable=True),
        sa.Column('excluded_from_retrieval', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('details', JSONB, nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_skills_domain', 'skills', ['domain'], unique=False)
    op.create_index('ix_skills_status', 'skills', ['status'], unique=False)
    op.create_index('ix_skills_expires_at', 'skills', ['expires_at'], unique=False)
    op.create_index('ix_skills_theme_key', 'skills', ['theme_key'], unique=False)

    op.create_table(
        'skill_recommendations',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('decision_id', sa.String(length=64), nullable=False),
        sa.Column('skill_id', sa.String(length=36), nullable=False),
        sa.Column('relevance_score', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('was_presented', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('was_applied', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('match_type', sa.String(length=16), nullable=False, server_default='none'),
        sa.Column('detection_confidence', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('trade_outcome', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('contributed_to_success', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['skill_id'], ['skills.id']),
        sa.UniqueConstraint('decision_id', 'skill_id', name='uq_recommendation_decision_skill')
    )
    op.create_index('ix_skill_recommendations_decision_id', 'skill_recommendations', ['decision_id'], unique=False)
    op.create_index('ix_skill_recommendations_skill_id', 'skill_recommendations', ['skill_id'], unique=False)

    op.create_table(
        'judge_insights',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('decision_id', sa.String(length=64), nullable=False),
        sa.Column('domain', sa.String(length=32), nullable=False),
        sa.Column('mode', sa.String(length=16), nullable=False, server_default='post_hoc'),
        sa.Column('action', sa.String(length=32), nullable=True),
        sa.Column('target', sa.Text(), nullable=True),
        sa.Column('timing', sa.Float(), nullable=False),
        sa.Column('sizing', sa.Float(), nullable=False),
        sa.Column('selection', sa.Float(), nullable=False),
        sa.Column('risk_management', sa.Float(), nullable=False),
        sa.Column('market_read', sa.Float(), nullable=False),
        sa.Column('execution', sa.Float(), nullable=False),
        sa.Column('quality_score', sa.Float(), nullable=False),
        sa.Column('was_good_decision', sa.Boolean(), nullable=False),
        sa.Column('key_insight', sa.Text(), nullable=False),
        sa.Column('insight_type', sa.String(length=16), nullable=False, server_default='neutral'),
        sa.Column('strengths', sa.Text(), nullable=True),
        sa.Column('weaknesses', sa.Text(), nullable=True),
        sa.Column('better_approach', sa.Text(), nullable=True),
        sa.Column('actual_outcome', sa.String(length=16), nullable=True),
        sa.Column('actual_pnl_percent', sa.Float(), nullable=True),
        sa.Column('judge_was_right', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('decision_id', 'mode', name='uq_judge_insight_decision_mode')
    )
    op.create_index('ix_judge_insights_decision_id', 'judge_insights', ['decision_id'], unique=False)
    op.create_index('ix_judge_insights_domain', 'judge_insights', ['domain'], unique=False)
    op.create_index('ix_judge_insights_created_at', 'judge_insights', ['created_at'], unique=False)

    op.create_table(
        'skill_buckets',
        sa.Column('domain', sa.String(length=32), nullable=False),
        sa.Column('skill_type', sa.String(length=16), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('domain', 'skill_type')
    )


def downgrade() -> None:
    """Drop skill lifecycle tables."""
    op.drop_table('skill_buckets')
    op.drop_index('ix_judge_insights_created_at', table_name='judge_insights')
    op.drop_index('ix_judge_insights_domain', table_name='judge_insights')
    op.drop_index('ix_judge_insights_decision_id', table_name='judge_insights')
    op.drop_table('judge_insights')
    op.drop_index('ix_skill_recommendations_skill_id', table_name='skill_recommendations')
    op.drop_index('ix_skill_recommendations_decision_id', table_name='skill_recommendations')
    op.drop_table('skill_recommendations')
    op.drop_index('ix_skills_theme_key', table_name='skills')
    op.drop_index('ix_skills_expires_at', table_name='skills')
    op.drop_index('ix_skills_status', table_name='skills')
    op.drop_index('ix_skills_domain', table_name='skills')
    op.drop_table('skills')
