"""
Tests for migration file parsing and statement splitting.
"""
import pytest
from boardops.core.migrations.migration_parser import (
    compute_checksum,
    parse_migration,
    slugify,
    split_statements,
    version_from_filename,
)


COMPLIANCE_MIGRATION = """-- Migration: Compliance & Governance Automation Engine
-- Description: Creates compliance workflow tables

-- UP MIGRATION

CREATE TABLE IF NOT EXISTS compliance_templates (
    id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
    name VARCHAR(255) NOT NULL
);

GRANT ALL ON compliance_templates TO authenticated;

-- DOWN MIGRATION

DROP TABLE IF EXISTS compliance_templates;

-- MIGRATION COMPLETE
"""


def test_parse_extracts_sections_and_headers():
    migration = parse_migration(COMPLIANCE_MIGRATION, "012-compliance-governance-system.sql", "/db/012.sql")

    assert migration.version == "012-compliance-governance-system"
    assert migration.path == "/db/012.sql"
    assert migration.name == "Compliance & Governance Automation Engine"
    assert migration.description == "Creates compliance workflow tables"
    assert migration.up_sql.startswith("CREATE TABLE IF NOT EXISTS compliance_templates")
    assert migration.up_sql.endswith("GRANT ALL ON compliance_templates TO authenticated;")
    assert migration.down_sql == "DROP TABLE IF EXISTS compliance_templates;"
    assert "MIGRATION COMPLETE" not in migration.down_sql
    assert migration.has_down


def test_parse_is_idempotent():
    first = parse_migration(COMPLIANCE_MIGRATION, "20250823_002_compliance.sql")
    second = parse_migration(COMPLIANCE_MIGRATION, "20250823_002_compliance.sql")

    assert first.checksum_up == second.checksum_up
    assert first.checksum_down == second.checksum_down
    assert first == second


def test_checksums_track_sections_independently():
    original = parse_migration(COMPLIANCE_MIGRATION, "20250823_002_compliance.sql")
    edited = parse_migration(
        COMPLIANCE_MIGRATION.replace("DROP TABLE IF EXISTS compliance_templates;", "DROP TABLE compliance_templates;"),
        "20250823_002_compliance.sql",
    )

    assert edited.checksum_up == original.checksum_up
    assert edited.checksum_down != original.checksum_down
    assert original.checksum_up == compute_checksum(original.up_sql)


def test_missing_down_section_leaves_rollback_unsupported():
    content = "-- UP MIGRATION\nALTER TABLE users ADD COLUMN email TEXT;\n-- MIGRATION COMPLETE\n"
    migration = parse_migration(content, "20250102_001_add_email.sql")

    assert migration.up_sql == "ALTER TABLE users ADD COLUMN email TEXT;"
    assert migration.down_sql == ""
    assert not migration.has_down


def test_file_without_markers_is_all_up_body():
    content = "CREATE TABLE vaults (id UUID PRIMARY KEY);\nCREATE INDEX idx_vaults ON vaults(id);\n"
    migration = parse_migration(content, "020-virtual-board-room-system.sql")

    assert migration.up_sql == content.strip()
    assert migration.down_sql == ""
    assert migration.name == "virtual board room system"


def test_down_marker_without_up_marker():
    content = "CREATE TABLE a (id INT);\n-- DOWN MIGRATION\nDROP TABLE a;\n"
    migration = parse_migration(content, "001_a.sql")

    assert migration.up_sql == "CREATE TABLE a (id INT);"
    assert migration.down_sql == "DROP TABLE a;"


def test_markers_are_case_insensitive():
    content = "--  up migration\nSELECT 1;\n-- Down Migration\nSELECT 2;\n"
    migration = parse_migration(content, "001_case.sql")

    assert migration.up_sql == "SELECT 1;"
    assert migration.down_sql == "SELECT 2;"


@pytest.mark.parametrize("filename,expected", [
    ("20250823_001_add_document_collaboration_system.sql", "20250823_001_add_document_collaboration_system"),
    ("007-boardchat-system.sql", "007-boardchat-system"),
    ("015_gate_state.sql", "015_gate_state"),
    ("README.sql", None),
    ("7-too-short.sql", None),
    ("20250823_001_notes.txt", None),
])
def test_version_from_filename(filename, expected):
    assert version_from_filename(filename) == expected


def test_slugify():
    assert slugify("Add Vault Retention Policy!") == "add_vault_retention_policy"
    assert slugify("  board-analytics  ") == "board_analytics"
    with pytest.raises(ValueError):
        slugify("!!!")


def test_split_statements_on_top_level_semicolons():
    sql = """
    CREATE TABLE users (id UUID PRIMARY KEY);
    -- comment-only fragment;
    ALTER TABLE users ADD COLUMN email TEXT;
    """
    assert split_statements(sql) == [
        "CREATE TABLE users (id UUID PRIMARY KEY)",
        "-- comment-only fragment;\n    ALTER TABLE users ADD COLUMN email TEXT",
    ]


def test_split_statements_respects_quotes_and_dollar_bodies():
    sql = """
    INSERT INTO chat_messages (content) VALUES ('Welcome; it''s live');
    CREATE FUNCTION touch() RETURNS trigger AS $$
    BEGIN
        NEW.updated_at = NOW();
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql;
    CREATE FUNCTION tagged() RETURNS void AS $body$ SELECT 1; $body$ LANGUAGE sql;
    /* block; comment */
    SELECT "weird;name" FROM t
    """
    statements = split_statements(sql)

    assert len(statements) == 4
    assert statements[0] == "INSERT INTO chat_messages (content) VALUES ('Welcome; it''s live')"
    assert statements[1].startswith("CREATE FUNCTION touch()")
    assert statements[1].endswith("$$ LANGUAGE plpgsql")
    assert "$body$ SELECT 1; $body$" in statements[2]
    assert statements[3].endswith('SELECT "weird;name" FROM t')


def test_split_statements_drops_comment_only_input():
    assert split_statements("-- nothing here\n/* or here */;\n;") == []


def test_split_statements_handles_nested_block_comments():
    sql = """
    /* outer /* inner */ still commented; */
    CREATE TABLE users (id UUID);
    /* only /* a */ comment; */;
    DROP TABLE legacy_users;
    """
    statements = split_statements(sql)

    assert len(statements) == 2
    assert statements[0].endswith("CREATE TABLE users (id UUID)")
    assert statements[1] == "DROP TABLE legacy_users"
