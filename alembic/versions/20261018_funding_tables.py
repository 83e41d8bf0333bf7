"""Create feeds, articles and funding_mentions tables

Revision ID: 20261018_funding_tables
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '20261018_funding_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'feeds',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=False),
        sa.Column('article_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('funding_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_feeds_url', 'feeds', ['url'], unique=True)

    op.create_table(
        'articles',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('feed_id', sa.String(), nullable=True),
        sa.Column('url', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('author', sa.String(), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['feed_id'], ['feeds.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_articles_url', 'articles', ['url'], unique=True)
    op.create_index('ix_articles_feed_id', 'articles', ['feed_id'])
    op.create_index('ix_articles_published_at', 'articles', ['published_at'])

    op.create_table(
        'funding_mentions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('article_id', sa.String(), nullable=False),
        sa.Column('company_name', sa.String(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('amount_usd', sa.Float(), nullable=True),
        sa.Column('stage', sa.String(), nullable=True),
        sa.Column('investors', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('lead_investor', sa.String(), nullable=True),
        sa.Column('country', sa.String(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0'),
        sa.Column('raw_excerpt', sa.Text(), nullable=True),
        sa.Column('signals', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('ingested_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['article_id'], ['articles.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_funding_mentions_article_id', 'funding_mentions', ['article_id'], unique=True)
    op.create_index('ix_funding_mentions_company_name', 'funding_mentions', ['company_name'])
    op.create_index('ix_funding_mentions_created_at', 'funding_mentions', ['created_at'])
    op.create_index('ix_funding_mentions_ingested_at', 'funding_mentions', ['ingested_at'])


def downgrade() -> None:
    op.drop_table('funding_mentions')
    op.drop_table('articles')
    op.drop_table('feeds')
