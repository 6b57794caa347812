"""Exception hierarchy for the RLS pipeline commands."""
from __future__ import annotations

SAMPLE_SIZE = 5


class RlsLedgerError(Exception):
    """Base class for every fatal pipeline error."""


class ConfigurationError(RlsLedgerError):
    """A required environment variable or artifact file is missing or invalid."""


class ConnectivityError(RlsLedgerError):
    """The database could not be reached."""


class DatabaseTimeoutError(ConnectivityError):
    """The database did not become ready within the attempt budget."""

    def __init__(self, attempts: int, last_error: Exception | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        message = f"database not ready after {attempts} attempts"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class IntegrityViolation(RlsLedgerError):
    """A matrix or ledger artifact breaks one of its invariants."""

    def __init__(self, description: str, keys: list[str]) -> None:
        self.description = description
        self.keys = list(keys)
        sample = ", ".join(self.keys[:SAMPLE_SIZE])
        super().__init__(f"{description} ({len(self.keys)}): {sample}")


class LedgerVerificationError(IntegrityViolation):
    """Strict mode found ledger entries that are still undecided."""
