"""
Migration: Add policy enforcement tables.

Creates the tables behind the action guard and policy engine on an existing
database (fresh installs get them from init_db):
1. standing_records - per-user active sanctions + cached trust score
2. trust_events - append-only signed-impact ledger
3. policy_enforcement_log - immutable record of applied policies
4. action_audit_log - append-only dispatched actions, counted for rate limits
5. notifications - user-facing sanction notices

Backfills a clean standing record for every existing user.
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/shiftguard"
)


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def run_migration():
    """Create all policy enforcement tables."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # =================================================================
        # TABLE 1: standing_records
        # =================================================================
        if table_exists(conn, "standing_records"):
            print("standing_records table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE standing_records (
                    user_id VARCHAR(36) PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
                    is_blocked BOOLEAN NOT NULL DEFAULT FALSE,
                    blocked_reason TEXT,
                    blocked_at TIMESTAMP,
                    blocked_until TIMESTAMP,
                    restriction_type VARCHAR(20),
                    restriction_reason TEXT,
                    restriction_violation VARCHAR(50),
                    restriction_expires_at TIMESTAMP,
                    requires_prepayment BOOLEAN NOT NULL DEFAULT FALSE,
                    prepayment_reason TEXT,
                    prepayment_until TIMESTAMP,
                    requires_manual_review BOOLEAN NOT NULL DEFAULT FALSE,
                    manual_review_reason TEXT,
                    manual_review_until TIMESTAMP,
                    trust_score INTEGER NOT NULL DEFAULT 100,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            for column in ("blocked_until", "restriction_expires_at", "prepayment_until", "manual_review_until"):
                conn.execute(text(
                    f"CREATE INDEX idx_standing_{column} ON standing_records({column})"
                ))
            conn.execute(text("""
                INSERT INTO standing_records (user_id)
                SELECT id FROM users
                WHERE id NOT IN (SELECT user_id FROM standing_records)
            """))
            print("Created standing_records table")

        # =================================================================
        # TABLE 2: trust_events
        # =================================================================
        if table_exists(conn, "trust_events"):
            print("trust_events table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE trust_events (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    event_type VARCHAR(50) NOT NULL,
                    severity VARCHAR(10) NOT NULL DEFAULT 'low',
                    impact INTEGER NOT NULL,
                    resource_id VARCHAR(36),
                    description TEXT,
                    event_metadata JSON,
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_trust_events_user ON trust_events(user_id)
            """))
            print("Created trust_events table")

        # =================================================================
        # TABLE 3: policy_enforcement_log
        # =================================================================
        if table_exists(conn, "policy_enforcement_log"):
            print("policy_enforcement_log table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE policy_enforcement_log (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    violation VARCHAR(50) NOT NULL,
                    trust_score_impact INTEGER NOT NULL,
                    effects JSON NOT NULL,
                    resource_id VARCHAR(36),
                    event_metadata JSON,
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_policy_log_user ON policy_enforcement_log(user_id)
            """))
            print("Created policy_enforcement_log table")

        # =================================================================
        # TABLE 4: action_audit_log
        # =================================================================
        if table_exists(conn, "action_audit_log"):
            print("action_audit_log table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE action_audit_log (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    action VARCHAR(50) NOT NULL,
                    resource_id VARCHAR(36),
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_action_audit_user_action_created
                ON action_audit_log(user_id, action, created_at)
            """))
            print("Created action_audit_log table")

        # =================================================================
        # TABLE 5: notifications
        # =================================================================
        if table_exists(conn, "notifications"):
            print("notifications table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE notifications (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    type VARCHAR(50) NOT NULL,
                    title VARCHAR(255) NOT NULL,
                    body TEXT NOT NULL,
                    action_url VARCHAR(255),
                    is_read BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_notifications_user ON notifications(user_id)
            """))
            print("Created notifications table")

        conn.commit()
        print("\nPolicy enforcement migration completed successfully!")


if __name__ == "__main__":
    run_migration()
