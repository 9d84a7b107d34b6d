"""
SQLite connection management and schema initialisation.
Synchronous sqlite3; get_db() hands out one connection per unit of work.
"""

import os
import sqlite3
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DB_PATH = os.getenv("DB_PATH", "data/marketplace.db")


def get_db() -> sqlite3.Connection:
    """Open a SQLite connection with WAL journaling and foreign keys enabled."""
    conn = sqlite3.connect(DB_PATH, timeout=10.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# ── Schema ────────────────────────────────────────────────

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS chapters (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    name                VARCHAR(128) NOT NULL,
    type                VARCHAR(16)  DEFAULT 'COLLEGIATE',
    status              VARCHAR(16)  DEFAULT 'ACTIVE',
    stripe_account_id   VARCHAR(64),
    created_at          DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS fraternity_members (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    email               VARCHAR(255) NOT NULL UNIQUE,
    name                VARCHAR(128),
    chapter_id          INTEGER      REFERENCES chapters(id),
    verification_status VARCHAR(16)  DEFAULT 'PENDING',
    created_at          DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS sellers (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    email                   VARCHAR(255) NOT NULL,
    name                    VARCHAR(128) NOT NULL,
    status                  VARCHAR(16)  DEFAULT 'PENDING',
    stripe_account_id       VARCHAR(64),
    sponsoring_chapter_id   INTEGER      REFERENCES chapters(id),
    business_name           VARCHAR(255),
    business_email          VARCHAR(255),
    business_phone          VARCHAR(64),
    website                 VARCHAR(255),
    tax_id                  VARCHAR(64),
    stripe_account_type     VARCHAR(16),
    business_address_line1  VARCHAR(255),
    business_address_line2  VARCHAR(255),
    business_city           VARCHAR(128),
    business_state          VARCHAR(64),
    business_postal_code    VARCHAR(32),
    business_country        VARCHAR(8),
    created_at              DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at              DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS products (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    seller_id           INTEGER      NOT NULL REFERENCES sellers(id),
    name                VARCHAR(255) NOT NULL,
    description         TEXT,
    price_cents         INTEGER      NOT NULL,
    is_kappa_branded    INTEGER      DEFAULT 0,
    image_url           TEXT,
    created_at          DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS stewards (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    fraternity_member_id    INTEGER      NOT NULL REFERENCES fraternity_members(id),
    sponsoring_chapter_id   INTEGER      REFERENCES chapters(id),
    status                  VARCHAR(16)  DEFAULT 'PENDING',
    stripe_account_id       VARCHAR(64),
    created_at              DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS users (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    idp_subject             VARCHAR(128) UNIQUE,
    email                   VARCHAR(255) NOT NULL UNIQUE,
    role                    VARCHAR(16)  NOT NULL DEFAULT 'GUEST',
    fraternity_member_id    INTEGER      REFERENCES fraternity_members(id),
    seller_id               INTEGER      REFERENCES sellers(id),
    steward_id              INTEGER      REFERENCES stewards(id),
    created_at              DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at              DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS orders (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id              INTEGER      NOT NULL REFERENCES products(id),
    buyer_user_id           INTEGER      REFERENCES users(id),
    buyer_email             VARCHAR(255),
    amount_cents            INTEGER      NOT NULL,
    shipping_cents          INTEGER      NOT NULL DEFAULT 0,
    stripe_session_id       VARCHAR(255) NOT NULL UNIQUE,
    chapter_id              INTEGER      REFERENCES chapters(id),
    shipping_street         VARCHAR(255),
    shipping_city           VARCHAR(128),
    shipping_state          VARCHAR(64),
    shipping_zip            VARCHAR(32),
    shipping_country        VARCHAR(8),
    status                  VARCHAR(16)  NOT NULL DEFAULT 'PENDING',
    created_at              DATETIME     NOT NULL DEFAULT (datetime('now')),
    paid_at                 DATETIME
);

CREATE TABLE IF NOT EXISTS steward_listings (
    id                              INTEGER PRIMARY KEY AUTOINCREMENT,
    steward_id                      INTEGER      NOT NULL REFERENCES stewards(id),
    name                            VARCHAR(255) NOT NULL,
    description                     TEXT,
    shipping_cost_cents             INTEGER      NOT NULL DEFAULT 0,
    chapter_donation_cents          INTEGER      NOT NULL DEFAULT 0,
    sponsoring_chapter_id           INTEGER      NOT NULL REFERENCES chapters(id),
    status                          VARCHAR(16)  NOT NULL DEFAULT 'ACTIVE',
    claimed_by_fraternity_member_id INTEGER      REFERENCES fraternity_members(id),
    claimed_at                      DATETIME,
    created_at                      DATETIME     NOT NULL DEFAULT (datetime('now')),
    updated_at                      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS steward_claims (
    id                              INTEGER PRIMARY KEY AUTOINCREMENT,
    listing_id                      INTEGER      NOT NULL REFERENCES steward_listings(id),
    claimant_fraternity_member_id   INTEGER      NOT NULL REFERENCES fraternity_members(id),
    stripe_session_id               VARCHAR(255) NOT NULL UNIQUE,
    total_amount_cents              INTEGER      NOT NULL,
    shipping_cents                  INTEGER      NOT NULL,
    platform_fee_cents              INTEGER      NOT NULL,
    chapter_donation_cents          INTEGER      NOT NULL,
    status                          VARCHAR(16)  NOT NULL DEFAULT 'PENDING',
    created_at                      DATETIME     NOT NULL DEFAULT (datetime('now')),
    paid_at                         DATETIME
);

CREATE TABLE IF NOT EXISTS platform_settings (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    key             VARCHAR(64)  NOT NULL UNIQUE,
    value           TEXT,
    description     TEXT,
    updated_at      DATETIME     NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS notifications (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_email          VARCHAR(255) NOT NULL,
    type                VARCHAR(64)  NOT NULL,
    title               VARCHAR(255) NOT NULL,
    message             TEXT         NOT NULL,
    related_product_id  INTEGER      REFERENCES products(id),
    is_read             INTEGER      DEFAULT 0,
    created_at          DATETIME     NOT NULL DEFAULT (datetime('now'))
);
"""

# ── Indexes ───────────────────────────────────────────────

_CREATE_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_stripe_session
    ON orders(stripe_session_id);
CREATE INDEX IF NOT EXISTS idx_orders_status
    ON orders(status);
CREATE INDEX IF NOT EXISTS idx_orders_product
    ON orders(product_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_steward_claims_stripe_session
    ON steward_claims(stripe_session_id);
CREATE INDEX IF NOT EXISTS idx_steward_claims_listing
    ON steward_claims(listing_id, status);
CREATE INDEX IF NOT EXISTS idx_steward_listings_status
    ON steward_listings(status);
CREATE INDEX IF NOT EXISTS idx_sellers_stripe_account
    ON sellers(stripe_account_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email
    ON users(email);
CREATE UNIQUE INDEX IF NOT EXISTS idx_users_idp_subject
    ON users(idp_subject);
CREATE UNIQUE INDEX IF NOT EXISTS idx_platform_settings_key
    ON platform_settings(key);
CREATE INDEX IF NOT EXISTS idx_notifications_product_type
    ON notifications(related_product_id, type);
"""


# ── Initialisation ────────────────────────────────────────

def init_db() -> None:
    """Create the data directory, tables and indexes, then apply column migrations."""
    db_dir = Path(DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = get_db()
    try:
        conn.executescript(_CREATE_TABLES)
        conn.executescript(_CREATE_INDEXES)

        _migrate_schema(conn)

        conn.commit()
    finally:
        conn.close()


def _migrate_schema(conn: sqlite3.Connection) -> None:
    """Add columns introduced after the first release (idempotent)."""
    # steward_claims.chapter_transfer_id records the out-of-band donation transfer
    try:
        conn.execute("SELECT chapter_transfer_id FROM steward_claims LIMIT 1")
    except sqlite3.OperationalError:
        conn.execute("ALTER TABLE steward_claims ADD COLUMN chapter_transfer_id VARCHAR(64)")
