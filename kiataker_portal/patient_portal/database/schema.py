"""
Patient Portal Database Schema
Local stand-in for the hosted backend tables: profiles, credentials,
profile change history, visit summaries and an email outbox.
"""

SCHEMA = """
-- =============================================================================
-- 1. USERS - Patient profile (demographic, medical, billing)
-- =============================================================================
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,

    -- Patient Info
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    middle_initial TEXT,
    dob TEXT,
    gender TEXT,
    race TEXT,
    email TEXT NOT NULL UNIQUE,
    phone TEXT,
    profile_photo TEXT,

    -- Address
    address TEXT,
    city TEXT,
    state TEXT,
    zip TEXT,

    -- Medical
    primary_care TEXT,
    current_medication TEXT,  -- JSON array: ["Lisinopril 10mg"]
    allergies TEXT,
    pharmacy TEXT,
    fax TEXT,

    -- Party responsible
    billto TEXT,
    relationship TEXT,
    responsible_address TEXT,
    responsible_phone TEXT,
    citystatezip TEXT,
    consentgiven INTEGER DEFAULT 0,

    -- Metadata
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);


-- =============================================================================
-- 2. CREDENTIALS - Local login (hosted backend keeps these in its auth service)
-- =============================================================================
CREATE TABLE IF NOT EXISTS credentials (
    user_id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    password_blob TEXT NOT NULL,  -- "<hex_salt>:<hex_hash>"
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);


-- =============================================================================
-- 3. PROFILE_CHANGES_HISTORY - Audit trail of profile edits
-- =============================================================================
CREATE TABLE IF NOT EXISTS profile_changes_history (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    changes TEXT NOT NULL,  -- JSON object: {"field": {"old": ..., "new": ...}}
    changed_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id)
);

CREATE INDEX IF NOT EXISTS idx_profile_changes_user ON profile_changes_history(user_id);
CREATE INDEX IF NOT EXISTS idx_profile_changes_time ON profile_changes_history(changed_at);


-- =============================================================================
-- 4. STD_VISITS - Completed visit summaries (append-only)
-- =============================================================================
CREATE TABLE IF NOT EXISTS std_visits (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,

    exposure_type TEXT NOT NULL,
    diagnosis TEXT NOT NULL,
    medication_name TEXT NOT NULL,
    medication_directions TEXT NOT NULL,
    medication_qty TEXT NOT NULL,
    instructions TEXT NOT NULL,
    pharmacy_sent TEXT NOT NULL,

    -- Demographic snapshot at finalize time
    patient_name TEXT NOT NULL,
    patient_dob TEXT,
    patient_email TEXT NOT NULL,

    created_at TEXT NOT NULL,

    FOREIGN KEY (user_id) REFERENCES users(id)
);

CREATE INDEX IF NOT EXISTS idx_std_visits_user ON std_visits(user_id);
CREATE INDEX IF NOT EXISTS idx_std_visits_created ON std_visits(created_at);


-- =============================================================================
-- 5. NOTIFICATION_OUTBOX - Emails queued for delivery
-- =============================================================================
CREATE TABLE IF NOT EXISTS notification_outbox (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,  -- visit_receipt, one_time_code
    recipient TEXT NOT NULL,
    payload TEXT NOT NULL,  -- JSON
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_outbox_recipient ON notification_outbox(recipient);
"""
