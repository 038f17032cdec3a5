"""
Error taxonomy shared by the store, services and routes
"""


class ClassPulseError(Exception):
    """Base class for application errors"""


class NotFoundError(ClassPulseError):
    """No record matches the lookup (e.g. unknown session code)"""


class InactiveError(ClassPulseError):
    """The session exists but has ended"""


class ConflictError(ClassPulseError):
    """A unique key is already taken"""

    def __init__(self, table: str, column: str, value: object) -> None:
        super().__init__(f"Duplicate {table}.{column}: {value!r}")
        self.table = table
        self.column = column
        self.value = value


class TransientIOError(ClassPulseError):
    """Any other store failure; the caller may try again later"""
