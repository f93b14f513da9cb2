"""Error types and reconciliation results."""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class ProvisionError(Exception):
    """Base class for all provisioning failures."""


class ConfigError(ProvisionError):
    """The user configuration is invalid."""


class ValidationError(ProvisionError):
    """A sudoers candidate failed syntax validation."""


class AccountError(ProvisionError):
    """A user or group operation failed."""


class TemplateError(ProvisionError):
    """A template is missing or failed to render."""


class TransportError(ProvisionError):
    """Fetching public keys from the key host failed."""


class FilesystemError(ProvisionError):
    """A file, permission, ownership or symlink operation failed."""


@dataclass(frozen=True)
class StepFailure:
    """A failed step. ``record`` is None for host-wide steps."""

    record: Optional[str]
    step: str
    error: ProvisionError

    def describe(self) -> str:
        return f"{self.record or 'host'}: {self.step}: {self.error}"


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation run."""

    changes: List[Tuple[Optional[str], str]] = field(default_factory=list)
    failures: List[StepFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def failed(self, record: str) -> bool:
        """Check if any step failed for the given record."""
        return any(failure.record == record for failure in self.failures)
