# underwriter/directory.py
"""
Directory of addressable guarantors.

A Directory maps qualifier names to Guarantor instances so that a
fulfillment in one guarantor can depend on guarantees owned by another.
Guarantors receive a directory explicitly; those that don't fall back to
the process-wide directory returned by get_directory().
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from .errors import InvalidIdentifierError, QualifierTakenError, UnknownQualifierError
from .utils import format_name, is_identifier

if TYPE_CHECKING:
    from .guarantor import Guarantor

logger = logging.getLogger(__name__)


class Dependency(NamedTuple):
    """A guarantee owned by some guarantor. qualifier=None means "this one"."""
    identifier: str
    qualifier: Optional[str] = None


class ResolvedDependency(NamedTuple):
    """A dependency together with its settled value."""
    qualifier: Optional[str]
    identifier: str
    guarantee: Any


def as_dependency(pair: Any) -> Dependency:
    """
    Coerce a dependency description into a Dependency.

    Accepts a Dependency, a bare identifier string, or a 1- or 2-item
    sequence of (identifier, qualifier).
    """
    if isinstance(pair, Dependency):
        return pair
    if isinstance(pair, str):
        return Dependency(pair)
    if isinstance(pair, (tuple, list)) and 1 <= len(pair) <= 2:
        return Dependency(*pair)
    raise InvalidIdentifierError("get_all", pair)


class Directory:
    """
    Lookup from qualifier to Guarantor.

    Qualifiers are normalized with format_name, so "Users" and "users"
    address the same entry. A qualifier may be registered only once.
    """

    def __init__(self):
        self._entries: Dict[str, "Guarantor"] = {}

    def register(self, guarantor: "Guarantor") -> None:
        """
        Make a guarantor addressable under its qualifier.

        Raises QualifierTakenError if the qualifier is already registered.
        """
        key = format_name(guarantor.qualifier)
        if key in self._entries:
            raise QualifierTakenError(guarantor.qualifier)
        self._entries[key] = guarantor
        logger.debug(f"Registered guarantor '{key}'")

    def get(self, qualifier: str) -> Optional["Guarantor"]:
        """Get the guarantor registered under qualifier, or None."""
        return self._entries.get(format_name(qualifier))

    def qualifiers(self) -> List[str]:
        """List registered qualifiers in registration order."""
        return list(self._entries.keys())

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()

    def __contains__(self, qualifier: object) -> bool:
        return format_name(qualifier) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(
        self, dependency: Dependency, current: Optional["Guarantor"]
    ) -> Tuple[Optional[str], "asyncio.Future"]:
        if dependency.qualifier is None:
            guarantor = current
        else:
            guarantor = self.get(dependency.qualifier)

        if guarantor is None:
            error = UnknownQualifierError(
                dependency.qualifier, dependency.identifier, self.qualifiers()
            )
            logger.error(str(error))
            future = asyncio.get_running_loop().create_future()
            future.set_exception(error)
            return dependency.qualifier, future

        # Shielded so that cancelling the aggregate never cancels the
        # guarantor's shared future.
        return guarantor.qualifier, asyncio.shield(guarantor.get(dependency.identifier))

    async def get_all(
        self,
        pairs: Iterable[Any],
        current: Optional["Guarantor"] = None,
    ) -> List[ResolvedDependency]:
        """
        Resolve a batch of (identifier, qualifier) pairs.

        Pairs without a qualifier are resolved through current. Every lookup
        is dispatched before anything is awaited; the result preserves input
        order. The first failure propagates and sibling retrievals keep
        running.

        Args:
            pairs: Dependency descriptions (see as_dependency)
            current: Guarantor used for pairs without a qualifier

        Returns:
            List of ResolvedDependency in input order
        """
        dependencies = [as_dependency(pair) for pair in pairs]
        for dependency in dependencies:
            if not is_identifier(dependency.identifier):
                raise InvalidIdentifierError("get_all", dependency.identifier)

        lookups = [self._lookup(dependency, current) for dependency in dependencies]
        if not lookups:
            return []

        # Qualifiers are captured at dispatch; the directory may be cleared meanwhile
        values = await asyncio.gather(*(future for _, future in lookups))

        return [
            ResolvedDependency(qualifier, dependency.identifier, value)
            for dependency, (qualifier, _), value in zip(dependencies, lookups, values)
        ]


# Process-wide directory
_DIRECTORY: Optional[Directory] = None


def get_directory() -> Directory:
    """Get the process-wide directory, creating it on first use."""
    global _DIRECTORY
    if _DIRECTORY is None:
        _DIRECTORY = Directory()
    return _DIRECTORY


def reset_directory() -> None:
    """Clear and discard the process-wide directory (for testing and shutdown)."""
    global _DIRECTORY
    if _DIRECTORY is not None:
        _DIRECTORY.clear()
    _DIRECTORY = None
