"""Database schema definitions for DuckDB and SQLite.

DuckDB holds the analytical facts (documents, transactions, scores);
SQLite holds the rule catalog that configuration management edits.
"""

# =============================================================================
# DuckDB Schema - Documents, Transactions, Scores
# =============================================================================

DUCKDB_SCHEMA = """
-- =========================================
-- Source Facts (written by the extraction pipeline)
-- =========================================

CREATE TABLE IF NOT EXISTS documents (
    document_id VARCHAR PRIMARY KEY,
    entity_id VARCHAR NOT NULL,
    business_unit_id VARCHAR NOT NULL,
    document_type VARCHAR NOT NULL DEFAULT 'invoice',
    external_id VARCHAR,
    counterparty_name VARCHAR,
    counterparty_tax_id VARCHAR,
    total_amount DOUBLE,
    tax_amount DOUBLE,
    issue_date DATE,
    due_date DATE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS transactions (
    transaction_id VARCHAR PRIMARY KEY,
    entity_id VARCHAR NOT NULL,
    business_unit_id VARCHAR NOT NULL,
    counterparty_name VARCHAR,
    counterparty_tax_id VARCHAR,
    amount DOUBLE NOT NULL,
    transaction_date TIMESTAMP NOT NULL,
    description VARCHAR
);

-- =========================================
-- Risk Scores (owned by the engine)
-- =========================================

-- Latest score per document (replaced on re-evaluation)
CREATE TABLE IF NOT EXISTS document_risk_scores (
    document_id VARCHAR PRIMARY KEY,
    entity_id VARCHAR NOT NULL,
    business_unit_id VARCHAR NOT NULL,
    score DOUBLE NOT NULL CHECK (score >= 0 AND score <= 100),
    severity VARCHAR NOT NULL CHECK (severity IN ('low', 'medium', 'high')),
    triggered_rule_codes VARCHAR NOT NULL,  -- JSON array
    flags VARCHAR NOT NULL,  -- JSON array
    document_date DATE,
    generated_at TIMESTAMP NOT NULL
);

-- Latest score per business unit (superseded by later snapshots)
CREATE TABLE IF NOT EXISTS company_risk_scores (
    entity_id VARCHAR NOT NULL,
    business_unit_id VARCHAR NOT NULL,
    score DOUBLE NOT NULL CHECK (score >= 0 AND score <= 100),
    severity VARCHAR NOT NULL CHECK (severity IN ('low', 'medium', 'high')),
    triggered_rule_codes VARCHAR NOT NULL,  -- JSON array
    flags VARCHAR NOT NULL,  -- JSON array
    window_days INTEGER NOT NULL,
    window_start DATE NOT NULL,
    generated_at TIMESTAMP NOT NULL,
    PRIMARY KEY (entity_id, business_unit_id)
);

-- Append-only trend of every persisted score
CREATE TABLE IF NOT EXISTS risk_score_history (
    subject_type VARCHAR NOT NULL CHECK (subject_type IN ('document', 'company')),
    subject_id VARCHAR NOT NULL,
    entity_id VARCHAR NOT NULL,
    business_unit_id VARCHAR NOT NULL,
    score DOUBLE NOT NULL,
    severity VARCHAR NOT NULL,
    triggered_rule_codes VARCHAR NOT NULL,
    recorded_at TIMESTAMP NOT NULL
);

-- =========================================
-- Indexes
-- =========================================

CREATE INDEX IF NOT EXISTS idx_history_subject
    ON risk_score_history(subject_type, subject_id)
"""

# =============================================================================
# SQLite Schema - Rule Catalog
# =============================================================================

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS risk_rules (
    rule_id TEXT PRIMARY KEY,
    owner_id TEXT,  -- NULL = global rule
    scope TEXT NOT NULL CHECK (scope IN ('document', 'company')),
    code TEXT NOT NULL,
    description TEXT,
    weight REAL NOT NULL,
    severity TEXT NOT NULL DEFAULT 'medium',
    is_active BOOLEAN NOT NULL DEFAULT 1,
    config TEXT NOT NULL DEFAULT '{}',  -- JSON
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- code is unique per owner and scope, global rules share the empty owner key
CREATE UNIQUE INDEX IF NOT EXISTS idx_risk_rules_owner_scope_code
    ON risk_rules(COALESCE(owner_id, ''), scope, code);

CREATE INDEX IF NOT EXISTS idx_risk_rules_scope_active
    ON risk_rules(scope, is_active);
"""
