# underwriter/berth.py
"""
Berth: a family of addressable guarantors sharing one directory.

Example:
    berth = Berth(retriever=load)             # load(qualifier, identifier)
    berth.define("users")
    berth.define("posts", initializer=build_post)

    post = await berth.get("posts", "hello-world")
    deps = await berth.get_all([("alice", "users"), ("hello-world", "posts")])
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .directory import Directory, ResolvedDependency
from .errors import InvalidOptionError, UnknownQualifierError
from .guarantor import FulfillmentContext, Gate, Guarantor, as_gate
from .utils import is_identifier

logger = logging.getLogger(__name__)

# Shared retrievers are told which guarantor they are retrieving for
SharedRetriever = Callable[[str, str], Any]


class Berth:
    """
    Defines addressable guarantors and dispatches to them by qualifier.

    Each Berth owns its own Directory unless one is passed in, so two
    berths can reuse the same qualifiers without colliding.
    """

    def __init__(
        self,
        retriever: Optional[SharedRetriever] = None,
        gate: Optional[Union[Gate, Awaitable[Any]]] = None,
        retrieve_early: bool = False,
        directory: Optional[Directory] = None,
        meta: Optional[Dict[str, Any]] = None,
    ):
        if retriever is not None and not callable(retriever):
            raise InvalidOptionError("retriever", retriever, "a callable (qualifier, identifier)")
        if gate is not None and not inspect.isawaitable(gate):
            raise InvalidOptionError("gate", gate, "an awaitable")
        self.directory = directory if directory is not None else Directory()
        self.meta = dict(meta or {})
        self._retriever = retriever
        # Every defined guarantor shares one Gate; it starts inside the loop
        self._gate = as_gate(gate) if gate is not None else None
        self._retrieve_early = retrieve_early

    def _bind_retriever(self, qualifier: str) -> Optional[Callable[[str], Any]]:
        if self._retriever is None:
            return None
        shared = self._retriever

        def retriever(identifier: str) -> Any:
            return shared(qualifier, identifier)
        return retriever

    def define(
        self,
        qualifier: str,
        initializer: Optional[Callable[[FulfillmentContext], Any]] = None,
        retriever: Optional[Callable[..., Any]] = None,
        **options: Any,
    ) -> Guarantor:
        """
        Define an addressable guarantor.

        Args:
            qualifier: Unique name for the guarantor
            initializer: Shapes final values (defaults to pass-through)
            retriever: Custom retriever(identifier); defaults to the berth's
                shared retriever bound to this qualifier, unless
                public_fulfill=True is given, which makes the guarantor
                fulfillment-only
            **options: Passed through to Guarantor

        Returns:
            The new Guarantor
        """
        if not is_identifier(qualifier):
            raise InvalidOptionError("qualifier", qualifier, "a non-empty string")

        if retriever is None and not options.get("public_fulfill"):
            retriever = self._bind_retriever(qualifier)
        if retriever is None:
            options["public_fulfill"] = True

        options.setdefault("gate", self._gate)
        options.setdefault("retrieve_early", self._retrieve_early)

        guarantor = Guarantor(
            retriever=retriever,
            initializer=initializer,
            qualifier=qualifier,
            addressable=True,
            directory=self.directory,
            **options,
        )
        logger.debug(f"Berth defined guarantor '{qualifier}'")
        return guarantor

    def guarantor(self, qualifier: str) -> Guarantor:
        """Get a defined guarantor, raising UnknownQualifierError if missing."""
        found = self.directory.get(qualifier)
        if found is None:
            raise UnknownQualifierError(qualifier, None, self.directory.qualifiers())
        return found

    def qualifiers(self) -> List[str]:
        return self.directory.qualifiers()

    def _unknown(self, qualifier: str, identifier: Any) -> "asyncio.Future":
        future = asyncio.get_running_loop().create_future()
        future.set_exception(
            UnknownQualifierError(qualifier, identifier, self.directory.qualifiers())
        )
        return future

    def get(self, qualifier: str, identifier: str) -> "asyncio.Future":
        """Get a guarantee from the guarantor defined under qualifier."""
        found = self.directory.get(qualifier)
        if found is None:
            return self._unknown(qualifier, identifier)
        return found.get(identifier)

    def fulfill(
        self,
        qualifier: str,
        identifier: str,
        guarantee: Any,
        dependencies: Iterable[Any] = (),
    ) -> "asyncio.Future":
        found = self.directory.get(qualifier)
        if found is None:
            return self._unknown(qualifier, identifier)
        return found.fulfill(identifier, guarantee, dependencies)

    async def get_all(self, pairs: Iterable[Any]) -> List[ResolvedDependency]:
        """Resolve (identifier, qualifier) pairs across the berth's guarantors."""
        return await self.directory.get_all(pairs)

    async def wait_idle(self) -> None:
        """Wait for background work in every defined guarantor."""
        for qualifier in self.qualifiers():
            await self.directory.get(qualifier).wait_idle()

    def __contains__(self, qualifier: object) -> bool:
        return qualifier in self.directory
