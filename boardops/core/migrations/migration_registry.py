"""
Migration Registry

Discovers migration files in the migrations directory and scaffolds new ones.
"""
import os
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from boardops.core.migrations.migration_models import MigrationFile
from boardops.core.migrations.migration_parser import (
    DATED_PATTERN,
    match_filename,
    parse_migration,
    slugify,
)
from boardops.core.migrations.exceptions import MigrationNotFoundError, MigrationNameCollisionError

logger = logging.getLogger("boardops.migrations.registry")

MIGRATION_TEMPLATE = """-- Migration: {name}
-- Description: <describe this migration>
-- Created: {created}

-- UP MIGRATION

-- Write forward schema changes here


-- DOWN MIGRATION

-- Write statements that undo the UP section here


-- MIGRATION COMPLETE
"""


class MigrationRegistry:
    """
    Discovers and manages migration files.
    """

    def __init__(self, migrations_dir: str):
        """
        Initialize migration registry.

        Args:
            migrations_dir: Path to migrations directory
        """
        self.migrations_dir = migrations_dir

    def discover_migrations(self) -> List[MigrationFile]:
        """
        Discover all migration files in the migrations directory.

        Returns:
            List of MigrationFile objects in ascending version order.
            Empty if the directory does not exist.
        """
        if not os.path.isdir(self.migrations_dir):
            logger.warning(f"Migrations directory not found: {self.migrations_dir}")
            return []

        migrations = []
        for filename in sorted(os.listdir(self.migrations_dir)):
            if not filename.endswith('.sql'):
                continue

            if not match_filename(filename):
                logger.warning(f"Skipping file with invalid migration name format: {filename}")
                continue

            filepath = os.path.join(self.migrations_dir, filename)
            with open(filepath, 'r', encoding='utf-8') as f:
                content = f.read()

            migrations.append(parse_migration(content, filename, filepath))

        migrations.sort(key=lambda m: m.version)
        logger.debug(f"Discovered {len(migrations)} migrations from {self.migrations_dir}")
        return migrations

    def get_migration(self, version: str) -> MigrationFile:
        """
        Get a specific migration by version.

        Raises:
            MigrationNotFoundError: If no file carries that version
        """
        for migration in self.discover_migrations():
            if migration.version == version:
                return migration

        raise MigrationNotFoundError(f"Migration {version} not found in {self.migrations_dir}")

    def create_migration(self, name: str, now: Optional[datetime] = None) -> Path:
        """
        Write a new timestamped migration file with UP/DOWN section markers.

        Args:
            name: Free-form migration name, slugged for the filename
            now: Creation time, defaults to the current time

        Returns:
            Path of the new file

        Raises:
            MigrationNameCollisionError: If a migration with the same slug exists
            ValueError: If the name has no usable characters
        """
        slug = slugify(name)
        now = now or datetime.now()
        date_prefix = now.strftime("%Y%m%d")

        highest = 0
        if os.path.isdir(self.migrations_dir):
            for filename in os.listdir(self.migrations_dir):
                match = match_filename(filename)
                if not match:
                    continue
                if slugify(match.group("slug")) == slug:
                    raise MigrationNameCollisionError(
                        f"A migration named '{slug}' already exists: {filename}"
                    )
                dated = DATED_PATTERN.match(filename)
                if dated and dated.group("date") == date_prefix:
                    highest = max(highest, int(dated.group("seq")))

        sequence = highest + 1
        if sequence > 999:
            raise MigrationNameCollisionError(f"No free sequence number left for {date_prefix}")

        directory = Path(self.migrations_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{date_prefix}_{sequence:03d}_{slug}.sql"

        # Mode "x" fails if the file already exists
        try:
            with open(path, 'x', encoding='utf-8') as f:
                f.write(MIGRATION_TEMPLATE.format(name=name.strip(), created=now.isoformat(timespec="seconds")))
        except FileExistsError:
            raise MigrationNameCollisionError(f"Migration file already exists: {path}")

        logger.info(f"Created migration {path.name}")
        return path
