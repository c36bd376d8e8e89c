"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-02-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Supplier registry
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('state', sa.String(length=8), nullable=True),
        sa.Column('website', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('allow_price_display', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('scrape_status', sa.String(length=32), nullable=False, server_default='active'),
        sa.Column('consecutive_scrape_failures', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('scrape_failure_dates', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('last_scrape_failure_at', sa.DateTime(), nullable=True),
        sa.Column('postal_codes_served', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Price observations
    op.create_table(
        'supplier_prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('price_per_gallon', sa.Numeric(precision=6, scale=3), nullable=False),
        sa.Column('scraped_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('is_valid', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('source_type', sa.String(length=32), nullable=False, server_default='scraped'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], )
    )
    op.create_index(
        'ix_supplier_prices_supplier_scraped', 'supplier_prices', ['supplier_id', 'scraped_at']
    )

    # Engagement events
    op.create_table(
        'supplier_clicks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('action_type', sa.String(length=16), nullable=False),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], )
    )
    op.create_index('ix_supplier_clicks_created_at', 'supplier_clicks', ['created_at'])

    # Lookup request log
    op.create_table(
        'api_activity',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=8), nullable=False, server_default='GET'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_api_activity_created_at', 'api_activity', ['created_at'])

    # Search areas
    op.create_table(
        'user_locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('zip_code', sa.String(length=10), nullable=False),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('state', sa.String(length=8), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=True, server_default='1'),
        sa.Column('coverage_quality', sa.String(length=16), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_user_locations_first_seen_at', 'user_locations', ['first_seen_at'])

    # Community delivery reports
    op.create_table(
        'community_deliveries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('fuel_type', sa.String(length=32), nullable=False, server_default='heating_oil'),
        sa.Column('validation_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_community_deliveries_created_at', 'community_deliveries', ['created_at'])

    # Weather
    op.create_table(
        'weather_history',
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('region', sa.String(length=32), nullable=True),
        sa.Column('temp_avg', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('date')
    )

    # Nightly snapshot
    op.create_table(
        'daily_platform_metrics',
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('computed_at', sa.DateTime(), nullable=False),
        sa.Column('search_zip_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('search_zips', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pipeline_suppliers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('suppliers_clicked_7d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('suppliers_clicked_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('suppliers_called_7d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('suppliers_called_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('zip_days_with_click_7d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('zip_days_with_call_7d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('zips_with_call_7d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calls_7d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('website_clicks_7d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deliveries_7d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deliveries_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deliveries_oil_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deliveries_propane_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deliveries_propane_prev30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('demand_density_top25', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('community_top_zips_30d', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.PrimaryKeyConstraint('day')
    )


def downgrade() -> None:
    op.drop_table('daily_platform_metrics')
    op.drop_table('weather_history')
    op.drop_index('ix_community_deliveries_created_at', table_name='community_deliveries')
    op.drop_table('community_deliveries')
    op.drop_index('ix_user_locations_first_seen_at', table_name='user_locations')
    op.drop_table('user_locations')
    op.drop_index('ix_api_activity_created_at', table_name='api_activity')
    op.drop_table('api_activity')
    op.drop_index('ix_supplier_clicks_created_at', table_name='supplier_clicks')
    op.drop_table('supplier_clicks')
    op.drop_index('ix_supplier_prices_supplier_scraped', table_name='supplier_prices')
    op.drop_table('supplier_prices')
    op.drop_table('suppliers')
