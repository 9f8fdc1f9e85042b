# tests/test_berth.py
"""Tests for Berth."""

import asyncio

import pytest

from underwriter.berth import Berth
from underwriter.directory import Directory, ResolvedDependency, get_directory, reset_directory
from underwriter.errors import InvalidOptionError, QualifierTakenError, UnknownQualifierError
from underwriter.guarantor import Guarantor


def run(coro):
    return asyncio.run(coro)


class SharedRetriever:
    """Records (qualifier, identifier) calls."""

    def __init__(self):
        self.calls = []

    def __call__(self, qualifier, identifier):
        self.calls.append((qualifier, identifier))
        return f"{qualifier}/{identifier}"


@pytest.fixture
def retriever():
    return SharedRetriever()


@pytest.fixture
def berth(retriever):
    return Berth(retriever=retriever, meta={"source": "test"})


class TestBerthDefine:
    """Test defining guarantors."""

    def setup_method(self):
        reset_directory()

    def teardown_method(self):
        reset_directory()

    def test_define_returns_addressable_guarantor(self, berth):
        guarantor = berth.define("users")
        assert isinstance(guarantor, Guarantor)
        assert guarantor.addressable
        assert berth.guarantor("users") is guarantor
        assert "users" in berth
        assert berth.qualifiers() == ["users"]

    def test_berth_uses_own_directory(self, berth):
        berth.define("users")
        assert "users" not in get_directory()
        assert isinstance(berth.directory, Directory)

    def test_berths_are_isolated(self, retriever):
        Berth(retriever=retriever).define("users")
        Berth(retriever=retriever).define("users")

    def test_injected_directory(self, retriever):
        directory = Directory()
        berth = Berth(retriever=retriever, directory=directory)
        guarantor = berth.define("users")
        assert directory.get("users") is guarantor

    def test_define_duplicate(self, berth):
        berth.define("users")
        with pytest.raises(QualifierTakenError):
            berth.define("USERS")

    def test_define_requires_qualifier(self, berth):
        with pytest.raises(InvalidOptionError):
            berth.define("")

    def test_invalid_shared_retriever(self):
        with pytest.raises(InvalidOptionError):
            Berth(retriever="not callable")

    def test_guarantor_unknown(self, berth):
        berth.define("users")
        with pytest.raises(UnknownQualifierError) as exc_info:
            berth.guarantor("posts")
        assert exc_info.value.known == ["users"]

    def test_meta(self, berth):
        assert berth.meta == {"source": "test"}


class TestBerthResolution:
    """Test resolving guarantees through a berth."""

    def test_shared_retriever_gets_qualifier(self, berth, retriever):
        async def scenario():
            berth.define("users")
            berth.define("posts")
            values = await asyncio.gather(
                berth.get("users", "alice"),
                berth.get("posts", "p1"),
                berth.get("users", "alice"),
            )
            return values

        assert run(scenario()) == ["users/alice", "posts/p1", "users/alice"]
        assert retriever.calls == [("users", "alice"), ("posts", "p1")]

    def test_custom_retriever(self, berth, retriever):
        async def scenario():
            berth.define("numbers", retriever=lambda identifier: int(identifier))
            return await berth.get("numbers", "42")

        assert run(scenario()) == 42
        assert retriever.calls == []

    def test_initializer(self, berth):
        async def scenario():
            berth.define("users", initializer=lambda context: context.guarantee.upper())
            return await berth.get("users", "bob")

        assert run(scenario()) == "USERS/BOB"

    def test_public_fulfill_skips_shared_retriever(self, berth, retriever):
        """Test public_fulfill=True defines a fulfillment-only guarantor."""
        async def scenario():
            berth.define("settings", public_fulfill=True)
            future = berth.get("settings", "db")
            await asyncio.sleep(0)
            assert not future.done()
            berth.fulfill("settings", "db", {"host": "localhost"})
            return await future

        assert run(scenario()) == {"host": "localhost"}
        assert retriever.calls == []

    def test_berth_without_retriever(self):
        async def scenario():
            berth = Berth()
            berth.define("values")
            berth.fulfill("values", "a", 1)
            return await berth.get("values", "a")

        assert run(scenario()) == 1

    def test_unknown_qualifier_rejects(self, berth):
        async def scenario():
            berth.define("users")
            with pytest.raises(UnknownQualifierError):
                await berth.get("posts", "p1")
            with pytest.raises(UnknownQualifierError):
                await berth.fulfill("posts", "p1", "x")

        run(scenario())

    def test_get_all(self, berth):
        async def scenario():
            berth.define("users")
            berth.define("posts")
            return await berth.get_all([("alice", "users"), ("p1", "posts")])

        assert run(scenario()) == [
            ResolvedDependency("users", "alice", "users/alice"),
            ResolvedDependency("posts", "p1", "posts/p1"),
        ]

    def test_cross_guarantor_dependencies(self, berth):
        """Test a fulfillment waits on a guarantee from another guarantor."""
        async def scenario():
            berth.define("users")
            berth.define(
                "posts",
                public_fulfill=True,
                initializer=lambda c: {
                    "body": c.guarantee,
                    "authors": [d.guarantee for d in c.dependencies],
                },
            )
            await berth.fulfill("posts", "p1", "hi", [("alice", "users"), ("bob", "users")])
            await berth.wait_idle()
            return await berth.get("posts", "p1")

        assert run(scenario()) == {"body": "hi", "authors": ["users/alice", "users/bob"]}

    def test_shared_gate(self, retriever):
        """Test every defined guarantor waits on the berth's gate."""
        async def scenario():
            gate = asyncio.get_running_loop().create_future()
            berth = Berth(retriever=retriever, gate=gate)
            berth.define("users")
            berth.define("posts")

            pending = [berth.get("users", "a"), berth.get("posts", "b")]
            for _ in range(5):
                await asyncio.sleep(0)
            assert retriever.calls == []

            gate.set_result(None)
            return await asyncio.gather(*pending)

        assert run(scenario()) == ["users/a", "posts/b"]

    def test_coroutine_gate(self, retriever):
        async def scenario():
            opened = []

            async def open_gate():
                opened.append(True)

            berth = Berth(retriever=retriever, gate=open_gate())
            berth.define("users")
            berth.define("posts")
            values = await asyncio.gather(berth.get("users", "a"), berth.get("posts", "b"))
            assert opened == [True]
            return values

        assert run(scenario()) == ["users/a", "posts/b"]

    def test_coroutine_gate_built_outside_loop(self, retriever):
        """Test a berth made before the event loop runs its gate inside it."""
        opened = []

        async def open_gate():
            opened.append(True)

        berth = Berth(retriever=retriever, gate=open_gate())
        berth.define("users")
        berth.define("posts")

        async def scenario():
            return await asyncio.gather(berth.get("users", "a"), berth.get("posts", "b"))

        assert run(scenario()) == ["users/a", "posts/b"]
        assert opened == [True]
        assert retriever.calls == [("users", "a"), ("posts", "b")]

    def test_invalid_gate(self, retriever):
        with pytest.raises(InvalidOptionError):
            Berth(retriever=retriever, gate="later")
