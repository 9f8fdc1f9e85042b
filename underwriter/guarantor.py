# underwriter/guarantor.py
"""
Single-flight guarantee registry.

A Guarantor hands out one future per identifier. The first get() for an
identifier schedules retrieval (after the gate opens, unless retrieve_early
is set); every later get() returns the same future. fulfill() supplies a
value from outside the retrieval path, at most once per identifier, and may
wait on dependencies owned by other guarantors before initializing it.

All state is mutated in synchronous code between awaits, so the
check-then-act sequences need no locks on a single event loop.
"""

import asyncio
import inspect
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Type, Union

from .directory import Directory, ResolvedDependency, get_directory
from .errors import AlreadyFulfilledError, InvalidIdentifierError, InvalidOptionError
from .utils import format_name, initialize_if_needed, is_identifier, maybe_await

logger = logging.getLogger(__name__)

# Methods a future class must expose to be usable by a Guarantor
FUTURE_CONTRACT = ("add_done_callback", "set_result", "set_exception", "done", "cancelled", "__await__")


class RetrievalMode(Enum):
    """How the retriever hands back its guarantee."""
    VALUE = "value"          # retriever(identifier) returns the guarantee
    CALLBACK = "callback"    # retriever(identifier, fulfill) calls fulfill itself


class MissingGuarantee(Enum):
    """What to do when a value-mode retriever returns None."""
    FULFILL = "fulfill"                        # warn, then fulfill with None
    AWAIT_FULFILLMENT = "await_fulfillment"    # leave pending for fulfill()


@dataclass
class FulfillmentContext:
    """Everything an initializer gets to build the final value."""
    identifier: str
    qualifier: Optional[str]
    guarantee: Any
    dependencies: List[ResolvedDependency] = field(default_factory=list)


def default_initializer(context: FulfillmentContext) -> Any:
    """Pass the raw guarantee through unchanged."""
    return context.guarantee


@dataclass
class GuarantorStats:
    """Counters for a guarantor's activity."""
    hits: int = 0            # get() returned an existing future
    misses: int = 0          # get() created a future
    retrievals: int = 0      # retriever invocations
    fulfillments: int = 0    # accepted fulfill() calls
    conflicts: int = 0       # rejected duplicate fulfill() calls
    failures: int = 0        # futures settled with an exception

    def record_hit(self):
        self.hits += 1

    def record_miss(self):
        self.misses += 1


class Gate:
    """
    A shared start signal.

    Wraps an awaitable and turns it into a single future the first time it
    is awaited, inside whichever event loop is running then. Guarantors
    sharing a Gate therefore await one underlying coroutine, and a Gate can
    be created before any event loop exists.
    """

    def __init__(self, awaitable: Awaitable[Any]):
        if not inspect.isawaitable(awaitable):
            raise InvalidOptionError("gate", awaitable, "an awaitable")
        self._awaitable = awaitable
        self._future: Optional[asyncio.Future] = None

    @property
    def started(self) -> bool:
        return self._future is not None

    async def wait(self) -> None:
        """Wait for the gate to open. Raises whatever the awaitable raised."""
        if self._future is None:
            self._future = asyncio.ensure_future(self._awaitable)
            self._awaitable = None
        # Shielded so a cancelled waiter never cancels the shared gate
        await asyncio.shield(self._future)

    def __await__(self):
        return self.wait().__await__()


# One Gate per coroutine, so guarantors handed the same coroutine share it
_COROUTINE_GATES: "weakref.WeakKeyDictionary[Any, Gate]" = weakref.WeakKeyDictionary()


def as_gate(gate: Union[Gate, Awaitable[Any]]) -> Gate:
    """Wrap an awaitable in a Gate, reusing the Gate already made for a coroutine."""
    if isinstance(gate, Gate):
        return gate
    if not asyncio.iscoroutine(gate):
        return Gate(gate)
    shared = _COROUTINE_GATES.get(gate)
    if shared is None:
        shared = _COROUTINE_GATES[gate] = Gate(gate)
    return shared


class Settler:
    """
    The resolve/reject pair for one future.

    Settling is terminal: once the future is done (resolved, rejected or
    cancelled by a consumer) further calls are ignored.
    """

    def __init__(self, future: "asyncio.Future"):
        self._future = future

    def resolve(self, value: Any) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(error)
        return True


def _coerce_enum(enum_cls: Type[Enum], value: Any, option: str, qualifier: Optional[str]) -> Enum:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise InvalidOptionError(option, value, f"one of: {choices}", qualifier) from None


class Guarantor:
    """
    Per-namespace registry of guarantees.

    Usage:
        users = Guarantor(retriever=fetch_user, qualifier="users", addressable=True)
        alice = await users.get("alice")

        config = Guarantor(public_fulfill=True)
        config.fulfill("db", {"host": "localhost"})
        db = await config.get("db")

    get() and fulfill() must be called while an event loop is running.
    """

    def __init__(
        self,
        retriever: Optional[Callable[..., Any]] = None,
        initializer: Optional[Callable[[FulfillmentContext], Any]] = None,
        gate: Optional[Union[Gate, Awaitable[Any]]] = None,
        retrieve_early: bool = False,
        qualifier: Optional[str] = None,
        addressable: bool = False,
        directory: Optional[Directory] = None,
        public_fulfill: bool = False,
        retrieval_mode: Union[RetrievalMode, str] = RetrievalMode.VALUE,
        missing: Union[MissingGuarantee, str] = MissingGuarantee.FULFILL,
        future_class: Type[Any] = asyncio.Future,
    ):
        """
        Create a guarantor.

        Args:
            retriever: Produces the guarantee for an identifier (sync or async).
                Optional when public_fulfill is True.
            initializer: Shapes the final value from a FulfillmentContext
            gate: Awaitable or Gate that must settle before retrieval and
                fulfillment. The same coroutine given to several guarantors
                is awaited once
            retrieve_early: Start retrieval without waiting for the gate
            qualifier: Name of this guarantor in its directory
            addressable: Register in the directory under qualifier
            directory: Directory for registration and dependency lookup
                (defaults to the process-wide directory)
            public_fulfill: Values arrive through fulfill(); no retriever needed
            retrieval_mode: RetrievalMode.VALUE or RetrievalMode.CALLBACK
            missing: Policy for a retriever returning None
            future_class: Future type used for guarantees

        Raises:
            InvalidOptionError: If an option is invalid
            QualifierTakenError: If addressable and the qualifier is taken
        """
        if not public_fulfill and not callable(retriever):
            raise InvalidOptionError(
                "retriever", retriever,
                "a function that accepts a string identifier and returns the requested resource",
                qualifier,
            )
        if retriever is not None and not callable(retriever):
            raise InvalidOptionError("retriever", retriever, "a callable or None", qualifier)

        if gate is not None and not inspect.isawaitable(gate):
            raise InvalidOptionError("gate", gate, "an awaitable", qualifier)

        if initializer is not None and not callable(initializer):
            raise InvalidOptionError("initializer", initializer, "a callable", qualifier)

        if not isinstance(future_class, type) or not all(
            callable(getattr(future_class, name, None)) for name in FUTURE_CONTRACT
        ):
            raise InvalidOptionError(
                "future_class", future_class,
                f"a future type providing {', '.join(FUTURE_CONTRACT)}",
                qualifier,
            )

        mode = _coerce_enum(RetrievalMode, retrieval_mode, "retrieval_mode", qualifier)
        missing_policy = _coerce_enum(MissingGuarantee, missing, "missing", qualifier)

        if addressable and not is_identifier(qualifier):
            raise InvalidOptionError(
                "qualifier", qualifier, "a non-empty string when addressable is True", qualifier
            )

        self.qualifier = qualifier
        self.addressable = addressable
        self.stats = GuarantorStats()

        self._retriever = retriever
        self._initializer = initializer or default_initializer
        self._gate = as_gate(gate) if gate is not None else None
        self._retrieve_early = retrieve_early
        self._retrieval_mode = mode
        self._missing = missing_policy
        self._future_class = future_class
        self._directory = directory if directory is not None else get_directory()

        self._fulfilled: Set[str] = set()
        self._pending: Dict[str, asyncio.Future] = {}
        self._settlers: Dict[str, Settler] = {}
        self._tasks: Set[asyncio.Task] = set()

        if addressable:
            self._directory.register(self)

    def __repr__(self) -> str:
        return f"Guarantor(qualifier={self.qualifier!r}, pending={len(self._pending)})"

    @property
    def directory(self) -> Directory:
        return self._directory

    # -- futures and tasks -------------------------------------------------

    def _new_future(self) -> "asyncio.Future":
        loop = asyncio.get_running_loop()
        if self._future_class is asyncio.Future:
            return loop.create_future()
        return self._future_class()

    def _rejected(self, error: BaseException) -> "asyncio.Future":
        future = self._new_future()
        future.set_exception(error)
        return future

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _create_entry(self, key: str) -> "asyncio.Future":
        future = self._new_future()
        self._settlers[key] = Settler(future)
        self.stats.record_miss()
        return future

    async def _wait_gate(self) -> None:
        if self._gate is None:
            return
        await self._gate.wait()

    # -- public API --------------------------------------------------------

    def get(self, identifier: str, lazy: bool = False) -> "asyncio.Future":
        """
        Get the future for a guarantee.

        Repeated and concurrent calls for the same identifier return the
        identical future, and the retriever runs at most once.

        Args:
            identifier: Identifier of the guarantee (case-insensitive)
            lazy: Create the future without scheduling retrieval

        Returns:
            Future resolved with the initialized value
        """
        if not is_identifier(identifier):
            return self._rejected(InvalidIdentifierError("get", identifier, self.qualifier))

        key = format_name(identifier)
        if key in self._pending:
            self.stats.record_hit()
            logger.debug(f"Guarantor[{self.qualifier}] reusing future for '{key}'")
            return self._pending[key]

        future = initialize_if_needed(self._pending, key, lambda: self._create_entry(key))

        if not lazy and self._retriever is not None:
            logger.debug(f"Guarantor[{self.qualifier}] scheduling retrieval of '{identifier}'")
            self._spawn(self._retrieve(identifier, key))

        return future

    def fulfill(
        self,
        identifier: str,
        guarantee: Any,
        dependencies: Iterable[Any] = (),
    ) -> "asyncio.Future":
        """
        Fulfill a guarantee.

        The first call for an identifier wins; later calls reject with
        AlreadyFulfilledError and change nothing. The returned future is the
        one every get() caller for this identifier awaits.

        Args:
            identifier: Identifier of the guarantee
            guarantee: The raw value
            dependencies: (identifier, qualifier) pairs to resolve through the
                directory before the initializer runs

        Returns:
            Future resolved with the initialized value
        """
        if not is_identifier(identifier):
            return self._rejected(InvalidIdentifierError("fulfill", identifier, self.qualifier))

        key = format_name(identifier)
        if key in self._fulfilled:
            self.stats.conflicts += 1
            return self._rejected(AlreadyFulfilledError(identifier, self.qualifier))
        self._fulfilled.add(key)
        self.stats.fulfillments += 1

        future = self.get(identifier, lazy=True)
        self._spawn(self._settle(identifier, key, guarantee, list(dependencies)))
        return future

    # -- background work ---------------------------------------------------

    async def _retrieve(self, identifier: str, key: str) -> None:
        settler = self._settlers[key]
        try:
            if not self._retrieve_early:
                await self._wait_gate()
            self.stats.retrievals += 1
            if self._retrieval_mode is RetrievalMode.CALLBACK:
                await maybe_await(self._retriever(identifier, self._callback_for(identifier)))
                return
            guarantee = await maybe_await(self._retriever(identifier))
        except Exception as e:
            logger.error(
                f"Guarantor[{self.qualifier}] retrieval failed for '{identifier}': {e}"
            )
            self.stats.failures += 1
            settler.reject(e)
            return

        if guarantee is None:
            if self._missing is MissingGuarantee.AWAIT_FULFILLMENT:
                logger.debug(
                    f"Guarantor[{self.qualifier}] retriever returned nothing for "
                    f"'{identifier}', waiting for fulfill()"
                )
                return
            logger.warning(
                f"Guarantor[{self.qualifier}] retriever returned None for '{identifier}'"
            )

        if key in self._fulfilled:
            logger.debug(
                f"Guarantor[{self.qualifier}] '{identifier}' was fulfilled during retrieval, "
                f"discarding retrieved value"
            )
            return
        self.fulfill(identifier, guarantee)

    def _callback_for(self, identifier: str) -> Callable[..., "asyncio.Future"]:
        def fulfill(guarantee: Any, dependencies: Iterable[Any] = ()) -> "asyncio.Future":
            return self.fulfill(identifier, guarantee, dependencies)
        return fulfill

    async def _settle(
        self,
        identifier: str,
        key: str,
        guarantee: Any,
        dependencies: List[Any],
    ) -> None:
        settler = self._settlers[key]
        try:
            await self._wait_gate()
            resolved = []
            if dependencies:
                resolved = await self._directory.get_all(dependencies, self)
        except Exception as e:
            logger.debug(
                f"Guarantor[{self.qualifier}] dependencies for '{identifier}' failed: {e}"
            )
            self.stats.failures += 1
            settler.reject(e)
            return

        context = FulfillmentContext(
            identifier=identifier,
            qualifier=self.qualifier,
            guarantee=guarantee,
            dependencies=resolved,
        )
        try:
            value = await maybe_await(self._initializer(context))
        except Exception as e:
            logger.error(
                f"Guarantor[{self.qualifier}] initializer failed for '{identifier}': {e}"
            )
            self.stats.failures += 1
            settler.reject(e)
            return

        settler.resolve(value)

    # -- inspection --------------------------------------------------------

    def has(self, identifier: str) -> bool:
        """Check if a future exists for identifier (without affecting stats)."""
        return format_name(identifier) in self._pending

    def is_fulfilled(self, identifier: str) -> bool:
        """Check if identifier has been fulfilled (the value may still be initializing)."""
        return format_name(identifier) in self._fulfilled

    def is_settled(self, identifier: str) -> bool:
        """Check if the future for identifier has settled."""
        future = self._pending.get(format_name(identifier))
        return future is not None and future.done()

    def list_identifiers(self) -> List[str]:
        """List normalized identifiers that have a future."""
        return list(self._pending.keys())

    def get_stats(self) -> GuarantorStats:
        """Get guarantor statistics."""
        return self.stats

    async def wait_idle(self) -> None:
        """Wait until all scheduled retrieval and fulfillment work has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
