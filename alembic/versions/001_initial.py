"""Initial migration - create stocks and watchlist tables.

Revision ID: 001
Revises: 
Create Date: 2026-10-16

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Latest stored quote per symbol
    op.create_table(
        'stocks',
        sa.Column('symbol', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('exchange', sa.String(), nullable=True),
        sa.Column('current_price', sa.Float(), nullable=False),
        sa.Column('previous_close', sa.Float(), nullable=True),
        sa.Column('change', sa.Float(), nullable=False),
        sa.Column('change_percent', sa.Float(), nullable=False),
        sa.Column('volume', sa.BigInteger(), nullable=True),
        sa.Column('market_cap', sa.BigInteger(), nullable=True),
        sa.Column('pe_ratio', sa.Float(), nullable=True),
        sa.Column('dividend_yield', sa.Float(), nullable=True),
        sa.Column('source', sa.String(), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index('ix_stocks_symbol', 'stocks', ['symbol'])
    op.create_index('ix_stocks_last_updated', 'stocks', ['last_updated'])

    # Create watchlists table
    op.create_table(
        'watchlists',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_watchlists_user_id', 'watchlists', ['user_id'])

    # Create watchlist_items table
    op.create_table(
        'watchlist_items',
        sa.Column('watchlist_id', sa.String(), primary_key=True),
        sa.Column('symbol', sa.String(), primary_key=True),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['watchlist_id'], ['watchlists.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('watchlist_id', 'symbol', name='uq_watchlist_symbol'),
    )


def downgrade() -> None:
    op.drop_table('watchlist_items')
    op.drop_index('ix_watchlists_user_id', table_name='watchlists')
    op.drop_table('watchlists')
    op.drop_index('ix_stocks_last_updated', table_name='stocks')
    op.drop_index('ix_stocks_symbol', table_name='stocks')
    op.drop_table('stocks')
