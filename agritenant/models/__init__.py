from agritenant.models.tenant import Tenant, TenantStatus, TenantFeatures, TenantBranding, FEATURE_FLAGS
from agritenant.models.user_tenant import UserTenant, AdminUser
from agritenant.models.security_event import SecurityEvent
from agritenant.models.farming import Farmer, Dealer, Product, BillingPlan

# Collection name -> table model, as exposed through the data store
COLLECTIONS = {
    "tenants": Tenant,
    "tenant_features": TenantFeatures,
    "tenant_branding": TenantBranding,
    "user_tenants": UserTenant,
    "admin_users": AdminUser,
    "security_events": SecurityEvent,
    "farmers": Farmer,
    "dealers": Dealer,
    "products": Product,
    "billing_plans": BillingPlan,
}

# Shared collections with no tenant_id column. Scoped gateways read these
# unfiltered and refuse to write them. Keep in sync with COLLECTIONS.
TENANT_EXEMPT_COLLECTIONS = frozenset({
    "billing_plans",
})
