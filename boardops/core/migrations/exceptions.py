"""
Migrations - Exceptions
"""


class MigrationError(Exception):
    """Base exception for migration errors"""
    pass


class MigrationNotFoundError(MigrationError):
    """Raised when a migration version has no file in the migrations directory"""
    pass


class MigrationNameCollisionError(MigrationError):
    """Raised when a new migration would reuse an existing name"""
    pass


class MigrationLockError(MigrationError):
    """Raised when another runner holds the migration lock"""
    pass


class StatementExecutionError(MigrationError):
    """Raised when one statement of a multi-statement body fails"""

    def __init__(self, position: int, total: int, cause: Exception):
        self.position = position
        self.total = total
        self.cause = cause
        super().__init__(f"Failed to execute statement {position}/{total}: {cause}")
