"""Exceptions raised by the indexing pipeline and the graph store."""


class HivemindError(Exception):
    """Base exception for vault indexing and querying."""

    pass


class FileSystemError(HivemindError):
    """Raised when the vault root itself cannot be read."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read vault root {path}: {reason}")


class ParseError(HivemindError):
    """Raised when a single document cannot be turned into a Document."""

    def __init__(self, reason: str, file_path: str | None = None, field: str | None = None) -> None:
        self.reason = reason
        self.file_path = file_path
        self.field = field
        super().__init__(reason)


class IntegrityError(HivemindError):
    """Raised when two files declare the same identifier under the strict policy."""

    def __init__(self, identifier: str, paths: list[str]) -> None:
        self.identifier = identifier
        self.paths = paths
        super().__init__(f"Duplicate identifier '{identifier}' in: {', '.join(paths)}")


class StorageError(HivemindError):
    """Raised when a store transaction fails and is rolled back."""

    pass
