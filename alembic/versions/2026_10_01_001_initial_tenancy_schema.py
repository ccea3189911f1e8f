"""Initial tenancy schema: tenants, memberships, admins, audit trail

Revision ID: 001_initial_tenancy_schema
Revises:
Create Date: 2026-10-01

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_initial_tenancy_schema'
down_revision = None

TENANT_STATUS = sa.Enum('TRIAL', 'ACTIVE', 'SUSPENDED', 'EXPIRED', 'CANCELLED', name='tenantstatus')
ROLE = sa.Enum(
    'SUPER_ADMIN', 'PLATFORM_ADMIN', 'ADMIN',
    'TENANT_OWNER', 'TENANT_ADMIN', 'TENANT_USER', 'FARMER', 'DEALER',
    name='role',
)

FEATURE_FLAGS = (
    'ai_chat', 'weather_forecast', 'marketplace', 'community_forum',
    'satellite_imagery', 'soil_testing', 'drone_monitoring', 'iot_integration',
    'ecommerce', 'payment_gateway', 'inventory_management', 'logistics_tracking',
    'basic_analytics', 'advanced_analytics', 'predictive_analytics', 'custom_reports',
    'api_access', 'webhook_support', 'third_party_integrations', 'white_label_mobile_app',
)


def upgrade():
    # Create tenants table
    op.create_table(
        'tenants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(), nullable=False, index=True),
        sa.Column('slug', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('type', sa.String(), nullable=False, server_default='agri_company'),
        sa.Column('status', TENANT_STATUS, nullable=False, server_default='TRIAL', index=True),
        sa.Column('subscription_plan', sa.String(), nullable=False, server_default='Kisan_Basic'),
        sa.Column('subdomain', sa.String(), nullable=True, unique=True, index=True),
        sa.Column('custom_domain', sa.String(), nullable=True, unique=True, index=True),
        sa.Column('max_farmers', sa.Integer(), nullable=True),
        sa.Column('max_dealers', sa.Integer(), nullable=True),
        sa.Column('max_products', sa.Integer(), nullable=True),
        sa.Column('max_storage_gb', sa.Integer(), nullable=True),
        sa.Column('max_api_calls_per_day', sa.Integer(), nullable=True),
        sa.Column('current_farmers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_dealers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_products', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_storage_gb', sa.Float(), nullable=False, server_default='0'),
        sa.Column('current_api_calls_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('allowed_origins', sa.JSON(), nullable=True),
        sa.Column('ip_allowlist', sa.JSON(), nullable=True),
        sa.Column('session_timeout_minutes', sa.Integer(), nullable=False, server_default='480'),
        sa.Column('rate_limit_per_minute', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Feature flags, one row per tenant
    op.create_table(
        'tenant_features',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id'), nullable=False, unique=True, index=True),
        *[sa.Column(flag, sa.Boolean(), nullable=False, server_default=sa.false()) for flag in FEATURE_FLAGS],
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'tenant_branding',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id'), nullable=False, unique=True, index=True),
        sa.Column('app_name', sa.String(), nullable=True),
        sa.Column('logo_url', sa.String(), nullable=True),
        sa.Column('primary_color', sa.String(), nullable=True),
        sa.Column('secondary_color', sa.String(), nullable=True),
        sa.Column('accent_color', sa.String(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Memberships and platform admins
    op.create_table(
        'user_tenants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False, index=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('role', ROLE, nullable=False, server_default='TENANT_USER'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('user_id', 'tenant_id', name='uq_user_tenant'),
    )

    op.create_table(
        'admin_users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('role', ROLE, nullable=False, server_default='ADMIN'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.current_timestamp()),
    )

    # Append-only audit trail
    op.create_table(
        'security_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('event_type', sa.String(), nullable=False, index=True),
        sa.Column('user_id', sa.String(), nullable=True, index=True),
        sa.Column('tenant_id', sa.String(), nullable=True, index=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=False, server_default='unknown'),
        sa.Column('user_agent', sa.String(), nullable=False, server_default='agritenant'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.current_timestamp(), index=True),
    )

    # Tenant-scoped domain collections
    op.create_table(
        'farmers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('village', sa.String(), nullable=True),
        sa.Column('land_acres', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'dealers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('business_name', sa.String(), nullable=False),
        sa.Column('contact_email', sa.String(), nullable=True),
        sa.Column('region', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('sku', sa.String(), nullable=True, index=True),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.current_timestamp()),
    )

    # Shared catalog, no tenant_id
    op.create_table(
        'billing_plans',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('code', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('monthly_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('max_farmers', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )


def downgrade():
    op.drop_table('billing_plans')
    op.drop_table('products')
    op.drop_table('dealers')
    op.drop_table('farmers')
    op.drop_table('security_events')
    op.drop_table('admin_users')
    op.drop_table('user_tenants')
    op.drop_table('tenant_branding')
    op.drop_table('tenant_features')
    op.drop_table('tenants')
    ROLE.drop(op.get_bind(), checkfirst=True)
    TENANT_STATUS.drop(op.get_bind(), checkfirst=True)
