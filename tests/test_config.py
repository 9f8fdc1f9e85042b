# tests/test_config.py
"""Tests for YAML configuration."""

import asyncio
import os.path
import tempfile
from pathlib import Path

import pytest

from underwriter.config import BerthConfig, RegistryConfig, build_berth, resolve_callable
from underwriter.errors import ConfigError, InvalidOptionError

CONFIG_YAML = """
retriever: os.path:join
retrieve_early: true
meta:
  owner: tests
registries:
  users:
  settings:
    public_fulfill: true
  shouting:
    retriever: builtins:str.upper
    initializer: dataclasses:asdict
    missing: await_fulfillment
"""


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class TestResolveCallable:
    """Test dotted callable paths."""

    def test_module_attribute(self):
        assert resolve_callable("os.path:join") is os.path.join

    def test_nested_attribute(self):
        assert resolve_callable("builtins:str.upper") is str.upper

    def test_missing_colon(self):
        with pytest.raises(ConfigError):
            resolve_callable("os.path.join")

    def test_missing_module(self):
        with pytest.raises(ConfigError, match="Cannot import"):
            resolve_callable("no_such_module_for_underwriter:thing")

    def test_missing_attribute(self):
        with pytest.raises(ConfigError):
            resolve_callable("os.path:no_such_function")

    def test_not_callable(self):
        with pytest.raises(ConfigError, match="not callable"):
            resolve_callable("os:sep")


class TestBerthConfig:
    """Test parsing."""

    def test_from_yaml(self):
        config = BerthConfig.from_yaml(CONFIG_YAML)

        assert config.retriever == "os.path:join"
        assert config.retrieve_early is True
        assert config.meta == {"owner": "tests"}
        assert [r.qualifier for r in config.registries] == ["users", "settings", "shouting"]

        shouting = config.registries[2]
        assert shouting.retriever == "builtins:str.upper"
        assert shouting.missing == "await_fulfillment"

    def test_from_file(self, temp_dir):
        path = temp_dir / "berth.yaml"
        path.write_text(CONFIG_YAML)
        config = BerthConfig.from_file(path)
        assert len(config.registries) == 3

    def test_empty_document(self):
        config = BerthConfig.from_yaml("")
        assert config.registries == []
        assert config.retriever is None

    def test_invalid_yaml(self):
        with pytest.raises(ConfigError):
            BerthConfig.from_yaml("registries: [unclosed")

    def test_non_mapping(self):
        with pytest.raises(ConfigError):
            BerthConfig.from_yaml("- a\n- b\n")

    def test_registries_must_be_mapping(self):
        with pytest.raises(ConfigError):
            BerthConfig.from_yaml("registries:\n  - users\n")

    def test_unknown_registry_option(self):
        with pytest.raises(ConfigError, match="addressable"):
            BerthConfig.from_yaml("registries:\n  users:\n    addressable: false\n")

    def test_registry_options(self):
        registry = RegistryConfig.from_dict("users", {"retrieve_early": False})
        options = registry.options()
        assert options["retrieve_early"] is False
        assert options["retrieval_mode"] == "value"
        assert "retriever" not in options


class TestBuildBerth:
    """Test building a Berth from configuration."""

    def test_build(self):
        berth = build_berth(BerthConfig.from_yaml(CONFIG_YAML))
        assert berth.qualifiers() == ["users", "settings", "shouting"]
        assert berth.meta == {"owner": "tests"}

    def test_resolve_through_built_berth(self):
        async def scenario():
            berth = build_berth(BerthConfig.from_yaml(CONFIG_YAML))

            user = await berth.get("users", "alice")
            shout = await berth.get("shouting", "hey")

            settings = berth.get("settings", "db")
            await asyncio.sleep(0)
            assert not settings.done()
            berth.fulfill("settings", "db", "sqlite")

            return user, shout, await settings

        user, shout, setting = run(scenario())
        assert user == os.path.join("users", "alice")
        assert shout == {"identifier": "hey", "qualifier": "shouting", "guarantee": "HEY", "dependencies": []}
        assert setting == "sqlite"

    def test_missing_policy_applied(self):
        async def scenario():
            config = BerthConfig.from_yaml(
                "registries:\n"
                "  maybe:\n"
                "    retriever: builtins:print\n"
                "    missing: await_fulfillment\n"
            )
            berth = build_berth(config)
            future = berth.get("maybe", "x")
            for _ in range(5):
                await asyncio.sleep(0)
            assert not future.done()
            berth.fulfill("maybe", "x", "later")
            return await future

        assert run(scenario()) == "later"

    def test_bad_policy(self):
        config = BerthConfig.from_yaml("registries:\n  users:\n    missing: shrug\n")
        with pytest.raises(InvalidOptionError):
            build_berth(config)

