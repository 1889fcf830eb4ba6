"""
Exceptions raised by the manifest engine.

Input problems in an ingestion batch are never raised; they come back as
data in a ValidationResult. Everything here is an environment problem or a
policy refusal that should abort the calling command.
"""

from typing import List, Optional


class VTMError(Exception):
    """Base class for all manifest errors."""
    pass


class ManifestNotFoundError(VTMError, FileNotFoundError):
    """The manifest file does not exist."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"VTM file not found at {path}. Run 'vtm init' to create one.")


class ManifestParseError(VTMError, ValueError):
    """The manifest exists but is not valid JSON or does not match the schema."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"Invalid VTM file {path}: {message}")


class ManifestExistsError(VTMError, FileExistsError):
    """Refusing to initialise over an existing manifest."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"VTM file already exists at {path}. Use --force to overwrite.")


class TaskNotFoundError(VTMError, LookupError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class TransactionNotFoundError(VTMError, LookupError):
    def __init__(self, transaction_id: str, reason: Optional[str] = None):
        self.transaction_id = transaction_id
        super().__init__(reason or f"Transaction not found: {transaction_id}")


class DuplicateTaskError(VTMError, ValueError):
    def __init__(self, task_ids: List[str]):
        self.task_ids = task_ids
        super().__init__(f"Task IDs already present in manifest: {', '.join(task_ids)}")


class RollbackBlockedError(VTMError):
    """Surviving tasks depend on tasks the rollback would remove."""

    def __init__(self, transaction_id: str, dependents: List[str]):
        self.transaction_id = transaction_id
        self.dependents = dependents
        super().__init__(
            f"Cannot rollback {transaction_id}: {len(dependents)} task(s) depend on "
            f"removed tasks ({', '.join(dependents)}). Use force option to rollback anyway."
        )


class LockTimeout(VTMError):
    """Manifest lock acquisition timed out."""
    pass
