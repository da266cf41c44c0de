"""
Bootstrap DDL for the engine tables.

Only the columns the engine reads and writes are defined here. Production
deployments manage their migrations separately.
"""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS limit_orders (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    side             TEXT NOT NULL CHECK (side IN ('buy', 'sell')),
    base_token       TEXT NOT NULL,
    quote_token      TEXT NOT NULL,
    amount           NUMERIC NOT NULL CHECK (amount > 0),
    limit_price      NUMERIC NOT NULL CHECK (limit_price > 0),
    max_slippage_bps INTEGER NOT NULL DEFAULT 0,
    expires_at       TIMESTAMPTZ,
    status           TEXT NOT NULL DEFAULT 'pending',
    claim_token      TEXT,
    claimed_at       TIMESTAMPTZ,
    filled_price     NUMERIC,
    execution_ref    TEXT,
    error            TEXT,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_limit_orders_status ON limit_orders (status);

CREATE TABLE IF NOT EXISTS arbitrage_executions (
    id               TEXT PRIMARY KEY,
    pair             TEXT NOT NULL,
    net_profit_pct   DOUBLE PRECISION NOT NULL,
    gross_profit_pct DOUBLE PRECISION NOT NULL,
    estimated_cost   NUMERIC NOT NULL,
    notional_value   NUMERIC NOT NULL,
    status           TEXT NOT NULL DEFAULT 'pending',
    claim_token      TEXT,
    claimed_at       TIMESTAMPTZ,
    execution_ref    TEXT,
    error            TEXT,
    discovered_at    TIMESTAMPTZ NOT NULL,
    expires_at       TIMESTAMPTZ NOT NULL,
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_arbitrage_executions_status ON arbitrage_executions (status);
"""
