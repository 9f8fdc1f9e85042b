# underwriter/errors.py
"""
Exception types raised by guarantors and directories.

Validation errors (bad options, bad identifiers) subclass TypeError,
conflicts subclass RuntimeError/ValueError and lookups subclass LookupError,
so callers that only know the builtin hierarchy still catch them.
"""

from typing import Any, List, Optional


class GuarantorError(Exception):
    """Base class for all underwriter errors."""


class InvalidOptionError(GuarantorError, TypeError):
    """A Guarantor or Berth was constructed with an invalid option."""

    def __init__(self, option: str, value: Any, expected: str, qualifier: Optional[str] = None):
        self.option = option
        self.value = value
        self.qualifier = qualifier
        super().__init__(
            f"Guarantor[{qualifier}]: invalid option '{option}' ({value!r}). "
            f"Expected {expected}."
        )


class InvalidIdentifierError(GuarantorError, TypeError):
    """An identifier was not a non-empty string."""

    def __init__(self, operation: str, identifier: Any, qualifier: Optional[str] = None):
        self.operation = operation
        self.identifier = identifier
        self.qualifier = qualifier
        super().__init__(
            f"Guarantor[{qualifier}].{operation}(identifier): "
            f"missing required parameter identifier, got {identifier!r}"
        )


class AlreadyFulfilledError(GuarantorError, RuntimeError):
    """A guarantee was fulfilled more than once."""

    def __init__(self, identifier: str, qualifier: Optional[str] = None):
        self.identifier = identifier
        self.qualifier = qualifier
        super().__init__(
            f"Guarantor[{qualifier}].fulfill(identifier='{identifier}'): "
            f"this guarantee has already been fulfilled. "
            f"Guarantees should only be fulfilled once."
        )


class QualifierTakenError(GuarantorError, ValueError):
    """Another addressable guarantor already uses this qualifier."""

    def __init__(self, qualifier: str):
        self.qualifier = qualifier
        super().__init__(
            f"There is already a guarantor with qualifier '{qualifier}'. "
            f"Choose a unique qualifier, or set addressable=False to isolate it "
            f"(it will then not be reachable as a dependency)."
        )


class UnknownQualifierError(GuarantorError, LookupError):
    """A dependency named a qualifier with no registered guarantor."""

    def __init__(self, qualifier: Optional[str], identifier: Optional[str], known: List[str]):
        self.qualifier = qualifier
        self.identifier = identifier
        self.known = list(known)
        listing = ", ".join(self.known) if self.known else "(none)"
        super().__init__(
            f"There is no guarantor with qualifier '{qualifier}' for '{identifier}'. "
            f"Current list of qualifiers include: {listing}"
        )


class ConfigError(GuarantorError, ValueError):
    """A configuration file could not be interpreted."""
