"""
Migration Parser

Turns migration file content into UP/DOWN bodies with checksums, derives
versions from filenames and splits SQL bodies into statements.
"""
import os
import re
import hashlib
from typing import List, Optional, Tuple
from boardops.core.migrations.migration_models import MigrationFile

# Section markers are plain SQL comments on their own line
UP_MARKER = re.compile(r'^[ \t]*--[ \t]*UP[ \t]+MIGRATION[ \t]*$', re.IGNORECASE | re.MULTILINE)
DOWN_MARKER = re.compile(r'^[ \t]*--[ \t]*DOWN[ \t]+MIGRATION[ \t]*$', re.IGNORECASE | re.MULTILINE)
COMPLETE_MARKER = re.compile(r'^[ \t]*--[ \t]*MIGRATION[ \t]+COMPLETE[ \t]*$', re.IGNORECASE | re.MULTILINE)

NAME_HEADER = re.compile(r'^[ \t]*--[ \t]*Migration:[ \t]*(.+?)[ \t]*$', re.IGNORECASE | re.MULTILINE)
DESCRIPTION_HEADER = re.compile(r'^[ \t]*--[ \t]*Description:[ \t]*(.+?)[ \t]*$', re.IGNORECASE | re.MULTILINE)

# 20250823_001_add_document_collaboration.sql
DATED_PATTERN = re.compile(r'^(?P<date>\d{8})_(?P<seq>\d{3})_(?P<slug>[A-Za-z0-9][A-Za-z0-9_\-]*)\.sql$')
# 007-boardchat-system.sql / 015_gate_state.sql
LEGACY_PATTERN = re.compile(r'^(?P<seq>\d{3,})[-_](?P<slug>[A-Za-z0-9][A-Za-z0-9_\-]*)\.sql$')

DOLLAR_TAG = re.compile(r'\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$')


def compute_checksum(body: str) -> str:
    """SHA-256 hex digest of a migration body."""
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def match_filename(filename: str) -> Optional[re.Match]:
    return DATED_PATTERN.match(filename) or LEGACY_PATTERN.match(filename)


def version_from_filename(filename: str) -> Optional[str]:
    """
    Derive the migration version from a filename.

    Returns:
        The filename stem, or None if the name does not follow the
        YYYYMMDD_NNN_description.sql or NNN-description.sql convention.
    """
    if not match_filename(filename):
        return None
    return filename[:-len(".sql")]


def humanize_slug(slug: str) -> str:
    return re.sub(r'[-_]+', ' ', slug).strip()


def slugify(name: str) -> str:
    """
    Filesystem-safe slug for a migration name.

    Raises:
        ValueError: If nothing usable is left of the name
    """
    slug = re.sub(r'[^a-z0-9]+', '_', name.strip().lower()).strip('_')
    if not slug:
        raise ValueError(f"Migration name {name!r} has no usable characters")
    return slug


def _split_sections(content: str) -> Tuple[str, str, str]:
    """
    Returns (header, up_body, down_body).
    """
    up_match = UP_MARKER.search(content)
    down_match = DOWN_MARKER.search(content, up_match.end() if up_match else 0)

    if up_match:
        header = content[:up_match.start()]
        up_start = up_match.end()
    else:
        header = ""
        up_start = 0

    if down_match:
        up_end = down_match.start()
        complete_match = COMPLETE_MARKER.search(content, down_match.end())
        down_end = complete_match.start() if complete_match else len(content)
        down_body = content[down_match.end():down_end]
    else:
        complete_match = COMPLETE_MARKER.search(content, up_start)
        up_end = complete_match.start() if complete_match else len(content)
        down_body = ""

    return header, content[up_start:up_end], down_body


def parse_migration(content: str, filename: str, path: Optional[str] = None) -> MigrationFile:
    """
    Parse migration file content.

    A file without an UP marker is treated as all UP body; a file without a
    DOWN marker gets an empty DOWN body, which makes rollback unsupported for it.

    Args:
        content: Raw file content
        filename: File name, used to derive the version
        path: Location on disk, defaults to the filename

    Returns:
        MigrationFile
    """
    version = version_from_filename(filename) or os.path.splitext(filename)[0]
    header, up_body, down_body = _split_sections(content)
    up_sql = up_body.strip()
    down_sql = down_body.strip()

    header_source = header or content
    name_match = NAME_HEADER.search(header_source)
    description_match = DESCRIPTION_HEADER.search(header_source)

    if name_match:
        name = name_match.group(1)
    else:
        match = match_filename(filename)
        name = humanize_slug(match.group("slug")) if match else version

    return MigrationFile(
        version=version,
        filename=filename,
        path=path or filename,
        name=name,
        description=description_match.group(1) if description_match else "",
        up_sql=up_sql,
        down_sql=down_sql,
        checksum_up=compute_checksum(up_sql),
        checksum_down=compute_checksum(down_sql),
    )


def _skip_line_comment(sql: str, start: int) -> int:
    end = sql.find("\n", start)
    return len(sql) if end == -1 else end


def _skip_block_comment(sql: str, start: int) -> int:
    # Postgres block comments nest
    depth = 0
    i = start
    n = len(sql)
    while i < n:
        if sql.startswith("/*", i):
            depth += 1
            i += 2
        elif sql.startswith("*/", i):
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return n


def _has_code(fragment: str) -> bool:
    i = 0
    n = len(fragment)
    while i < n:
        if fragment.startswith("--", i):
            i = _skip_line_comment(fragment, i)
        elif fragment.startswith("/*", i):
            i = _skip_block_comment(fragment, i)
        elif fragment[i].isspace():
            i += 1
        else:
            return True
    return False


def _skip_quoted(sql: str, start: int) -> int:
    """Index just past the quoted literal or identifier opening at start."""
    quote = sql[start]
    # E'...' strings allow backslash escapes
    backslash_escapes = (
        quote == "'"
        and start > 0
        and sql[start - 1] in "eE"
        and (start == 1 or not (sql[start - 2].isalnum() or sql[start - 2] == "_"))
    )
    i = start + 1
    n = len(sql)
    while i < n:
        ch = sql[i]
        if backslash_escapes and ch == "\\":
            i += 2
            continue
        if ch == quote:
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def split_statements(sql: str) -> List[str]:
    """
    Split a SQL body on top-level semicolons.

    Semicolons inside string literals, quoted identifiers, dollar-quoted
    bodies and comments do not split. Comment-only fragments are dropped.
    """
    statements = []
    buf = []
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]

        if sql.startswith("--", i):
            end = _skip_line_comment(sql, i)
        elif sql.startswith("/*", i):
            end = _skip_block_comment(sql, i)
        elif ch in ("'", '"'):
            end = _skip_quoted(sql, i)
        elif ch == "$" and (i == 0 or not (sql[i - 1].isalnum() or sql[i - 1] == "_")):
            tag = DOLLAR_TAG.match(sql, i)
            if tag:
                close = sql.find(tag.group(0), tag.end())
                end = n if close == -1 else close + len(tag.group(0))
            else:
                end = i + 1
        elif ch == ";":
            statement = "".join(buf).strip()
            if _has_code(statement):
                statements.append(statement)
            buf = []
            i += 1
            continue
        else:
            end = i + 1

        buf.append(sql[i:end])
        i = end

    statement = "".join(buf).strip()
    if _has_code(statement):
        statements.append(statement)

    return statements
