"""
Database schema for billing reconciliation.
Designed for Supabase (Postgres). Tables are written only by the webhook
service (service role); the app reads them through its own RLS policies.

Tables:
- organizations: stripe_customer_id links an org to its Stripe customer
- subscription_plans: internal plans and their Stripe product/price ids
- organization_subscriptions: one row per organization
- subscription_invoices: one row per Stripe invoice
- subscription_audit_log: append-only trail of every billing action
- processed_webhook_events: shared replay store (REPLAY_STORE=postgres)

Key design decisions:
1. Unique keys make every webhook write an idempotent upsert
2. Canceled subscriptions are rewritten to the free plan, never deleted
3. Audit rows may have no organization (security alerts)
"""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS organizations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    stripe_customer_id TEXT UNIQUE,  -- NULL until first checkout
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS subscription_plans (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL UNIQUE,  -- 'free', 'starter', 'team', 'business'
    display_name TEXT NOT NULL,
    stripe_product_id TEXT,
    stripe_monthly_price_id TEXT UNIQUE,
    stripe_annual_price_id TEXT UNIQUE,
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

INSERT INTO subscription_plans (name, display_name)
VALUES ('free', 'Free')
ON CONFLICT (name) DO NOTHING;

CREATE TABLE IF NOT EXISTS organization_subscriptions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL UNIQUE REFERENCES organizations(id) ON DELETE CASCADE,
    plan_id UUID NOT NULL REFERENCES subscription_plans(id),
    stripe_customer_id TEXT,
    stripe_subscription_id TEXT UNIQUE,
    status TEXT NOT NULL DEFAULT 'active' CHECK (
        status IN ('trialing', 'active', 'past_due', 'canceled', 'unpaid')
    ),
    billing_cycle TEXT CHECK (billing_cycle IN ('monthly', 'annual')),
    current_period_start TIMESTAMPTZ,
    current_period_end TIMESTAMPTZ,
    trial_start TIMESTAMPTZ,
    trial_end TIMESTAMPTZ,
    cancel_at_period_end BOOLEAN DEFAULT FALSE,
    canceled_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS subscription_invoices (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    subscription_id UUID REFERENCES organization_subscriptions(id),
    stripe_invoice_id TEXT NOT NULL UNIQUE,  -- idempotency key
    stripe_payment_intent_id TEXT,
    stripe_charge_id TEXT,
    amount_cents INTEGER NOT NULL,
    amount_paid_cents INTEGER DEFAULT 0,
    currency TEXT DEFAULT 'usd',
    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'paid')),
    line_items JSONB,
    invoice_date TIMESTAMPTZ DEFAULT NOW(),
    due_date TIMESTAMPTZ,
    paid_at TIMESTAMPTZ,
    invoice_pdf_url TEXT,
    hosted_invoice_url TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS subscription_audit_log (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID REFERENCES organizations(id) ON DELETE SET NULL,
    subscription_id UUID REFERENCES organization_subscriptions(id) ON DELETE SET NULL,
    action TEXT NOT NULL,
    action_details JSONB DEFAULT '{}'::jsonb,
    performed_by UUID,
    is_super_admin BOOLEAN DEFAULT FALSE,
    is_system BOOLEAN DEFAULT FALSE,  -- webhooks and other automation
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Shared replay store, only needed with REPLAY_STORE=postgres
CREATE TABLE IF NOT EXISTS processed_webhook_events (
    event_id TEXT PRIMARY KEY,
    seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- Keep the audit log append-only. organization_id and subscription_id may
-- still change: ON DELETE SET NULL nulls them when an organization is deleted.
CREATE OR REPLACE FUNCTION reject_audit_mutation() RETURNS TRIGGER AS $$
BEGIN
    IF TG_OP = 'DELETE' THEN
        RAISE EXCEPTION 'subscription_audit_log is append-only';
    END IF;
    IF NEW.action IS DISTINCT FROM OLD.action
        OR NEW.action_details IS DISTINCT FROM OLD.action_details
        OR NEW.performed_by IS DISTINCT FROM OLD.performed_by
        OR NEW.is_super_admin IS DISTINCT FROM OLD.is_super_admin
        OR NEW.is_system IS DISTINCT FROM OLD.is_system
        OR NEW.created_at IS DISTINCT FROM OLD.created_at THEN
        RAISE EXCEPTION 'subscription_audit_log is append-only';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS audit_log_append_only ON subscription_audit_log;
CREATE TRIGGER audit_log_append_only
    BEFORE UPDATE OR DELETE ON subscription_audit_log
    FOR EACH ROW EXECUTE FUNCTION reject_audit_mutation();

ALTER TABLE organization_subscriptions ENABLE ROW LEVEL SECURITY;
ALTER TABLE subscription_invoices ENABLE ROW LEVEL SECURITY;
ALTER TABLE subscription_audit_log ENABLE ROW LEVEL SECURITY;
ALTER TABLE processed_webhook_events ENABLE ROW LEVEL SECURITY;
"""

INDEXES_SQL = """
-- Webhooks resolve customers on nearly every event
CREATE INDEX IF NOT EXISTS idx_organizations_stripe_customer
    ON organizations(stripe_customer_id) WHERE stripe_customer_id IS NOT NULL;

CREATE INDEX IF NOT EXISTS idx_plans_stripe_product ON subscription_plans(stripe_product_id);

CREATE INDEX IF NOT EXISTS idx_subscriptions_status ON organization_subscriptions(status);

CREATE INDEX IF NOT EXISTS idx_invoices_organization ON subscription_invoices(organization_id);

CREATE INDEX IF NOT EXISTS idx_audit_organization ON subscription_audit_log(organization_id);
CREATE INDEX IF NOT EXISTS idx_audit_action_created ON subscription_audit_log(action, created_at DESC);

CREATE INDEX IF NOT EXISTS idx_processed_events_seen_at ON processed_webhook_events(seen_at);
"""

BILLING_TABLES = (
    "organizations",
    "subscription_plans",
    "organization_subscriptions",
    "subscription_invoices",
    "subscription_audit_log",
    "processed_webhook_events",
)
