# underwriter/config.py
"""
YAML configuration for a Berth.

Example:
    retriever: myapp.loaders:load          # load(qualifier, identifier)
    retrieve_early: false
    registries:
      users:
        initializer: myapp.models:build_user
      settings:
        public_fulfill: true
      posts:
        retriever: myapp.loaders:fetch_post
        retrieval_mode: callback
        missing: await_fulfillment

Callables are given as "package.module:attribute" paths.
"""

import importlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml

from .berth import Berth
from .errors import ConfigError

logger = logging.getLogger(__name__)

REGISTRY_OPTIONS = ("retriever", "initializer", "retrieval_mode", "missing", "public_fulfill", "retrieve_early")


def resolve_callable(path: str) -> Callable[..., Any]:
    """
    Import a callable from a "package.module:attribute" path.

    Dotted attributes after the colon are followed, so
    "pkg.mod:Loader.fetch" works for class attributes.
    """
    if not isinstance(path, str) or ":" not in path:
        raise ConfigError(f"Invalid callable path: {path!r}. Expected package.module:attribute")

    module_name, attr_path = path.split(":", 1)
    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import module '{module_name}' for {path}: {e}") from e

    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            raise ConfigError(f"'{module_name}' has no attribute '{attr_path}'") from e

    if not callable(target):
        raise ConfigError(f"{path} is not callable")
    return target


@dataclass
class RegistryConfig:
    """Options for one guarantor."""
    qualifier: str
    retriever: Optional[str] = None
    initializer: Optional[str] = None
    retrieval_mode: str = "value"
    missing: str = "fulfill"
    public_fulfill: bool = False
    retrieve_early: Optional[bool] = None

    @classmethod
    def from_dict(cls, qualifier: str, data: Optional[Dict[str, Any]]) -> "RegistryConfig":
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Registry '{qualifier}' must be a mapping, got {type(data).__name__}")
        unknown = set(data) - set(REGISTRY_OPTIONS)
        if unknown:
            raise ConfigError(f"Registry '{qualifier}' has unknown options: {', '.join(sorted(unknown))}")
        return cls(
            qualifier=qualifier,
            retriever=data.get("retriever"),
            initializer=data.get("initializer"),
            retrieval_mode=data.get("retrieval_mode", "value"),
            missing=data.get("missing", "fulfill"),
            public_fulfill=bool(data.get("public_fulfill", False)),
            retrieve_early=data.get("retrieve_early"),
        )

    def options(self) -> Dict[str, Any]:
        """Keyword arguments for Berth.define."""
        options: Dict[str, Any] = {
            "retrieval_mode": self.retrieval_mode,
            "missing": self.missing,
        }
        if self.public_fulfill:
            options["public_fulfill"] = True
        if self.retrieve_early is not None:
            options["retrieve_early"] = self.retrieve_early
        if self.initializer:
            options["initializer"] = resolve_callable(self.initializer)
        if self.retriever:
            options["retriever"] = resolve_callable(self.retriever)
        return options


@dataclass
class BerthConfig:
    """Parsed berth configuration."""
    retriever: Optional[str] = None
    retrieve_early: bool = False
    registries: List[RegistryConfig] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BerthConfig":
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")

        registries_data = data.get("registries", {}) or {}
        if not isinstance(registries_data, dict):
            raise ConfigError("'registries' must map qualifiers to options")

        return cls(
            retriever=data.get("retriever"),
            retrieve_early=bool(data.get("retrieve_early", False)),
            registries=[
                RegistryConfig.from_dict(str(qualifier), options)
                for qualifier, options in registries_data.items()
            ],
            meta=data.get("meta", {}) or {},
        )

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "BerthConfig":
        """Parse configuration from a YAML string."""
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Union[Path, str]) -> "BerthConfig":
        """Load configuration from a YAML file."""
        with open(path, "r") as f:
            return cls.from_yaml(f.read())


def build_berth(config: BerthConfig) -> Berth:
    """
    Create a Berth and define every configured registry.

    No event loop is needed until guarantees are requested.
    """
    retriever = resolve_callable(config.retriever) if config.retriever else None
    berth = Berth(
        retriever=retriever,
        retrieve_early=config.retrieve_early,
        meta=config.meta,
    )
    for registry in config.registries:
        berth.define(registry.qualifier, **registry.options())
        logger.debug(f"Configured registry '{registry.qualifier}'")
    return berth
