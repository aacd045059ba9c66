# scripts/database/setup_supabase.py
import os
import sys

from dotenv import load_dotenv
from supabase import create_client, Client

# SQL for the tables HEATHER reads and writes
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS profiles (
    id UUID PRIMARY KEY REFERENCES auth.users(id) ON DELETE CASCADE,
    name TEXT,
    email TEXT,
    role TEXT CHECK (role IN ('doctor', 'patient')),
    profile_completed BOOLEAN DEFAULT TRUE,
    image_url TEXT,
    location TEXT,
    specialty TEXT,
    verified BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS conversations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    patient_id UUID NOT NULL REFERENCES profiles(id),
    doctor_id UUID NOT NULL REFERENCES profiles(id),
    status TEXT DEFAULT 'active',
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    sender_id UUID NOT NULL REFERENCES profiles(id),
    content TEXT NOT NULL,
    message_type TEXT DEFAULT 'text',
    read_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS messages_conversation_idx ON messages (conversation_id, created_at);
"""

REQUIRED_TABLES = ("profiles", "conversations", "messages")


def print_schema():
    """Print the DDL to paste into the Supabase SQL editor"""
    print("🏗️ Creating HEATHER tables...")
    print("Run this SQL in your Supabase SQL Editor:")
    print(SCHEMA_SQL)


def test_connection(url: str, key: str):
    """Check that every table is reachable with the given credentials"""
    try:
        supabase: Client = create_client(url, key)
        for table in REQUIRED_TABLES:
            supabase.table(table).select("id").limit(1).execute()
            print(f"✅ Table '{table}' reachable")
        return supabase
    except Exception as e:
        print(f"❌ Connection failed: {e}")
        return None


if __name__ == "__main__":
    load_dotenv()
    print_schema()

    url, key = os.getenv("SUPABASE_URL"), os.getenv("SUPABASE_KEY")
    if not url or not key:
        print("⚠️ SUPABASE_URL / SUPABASE_KEY not set - skipping connection test")
        sys.exit(0)
    sys.exit(0 if test_connection(url, key) else 1)
