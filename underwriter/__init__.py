# underwriter - Single-flight asynchronous guarantee registries
#
# Callers request named guarantees (asynchronously produced values) as often
# as they like; every caller for an identifier shares one retrieval and one
# outcome, and a value can be supplied from outside exactly once.
#
# Core concepts:
# - Guarantor: Per-namespace registry with get() and fulfill()
# - Directory: Qualifier -> Guarantor lookup for cross-registry dependencies
# - Berth: Facade defining addressable guarantors that share a retriever

from .directory import (
    Dependency,
    Directory,
    ResolvedDependency,
    get_directory,
    reset_directory,
)
from .errors import (
    AlreadyFulfilledError,
    ConfigError,
    GuarantorError,
    InvalidIdentifierError,
    InvalidOptionError,
    QualifierTakenError,
    UnknownQualifierError,
)
from .guarantor import (
    FulfillmentContext,
    Gate,
    Guarantor,
    GuarantorStats,
    MissingGuarantee,
    RetrievalMode,
    default_initializer,
)
from .berth import Berth
from .config import BerthConfig, build_berth

__all__ = [
    # Core
    "Guarantor",
    "GuarantorStats",
    "FulfillmentContext",
    "Gate",
    "RetrievalMode",
    "MissingGuarantee",
    "default_initializer",
    "Directory",
    "Dependency",
    "ResolvedDependency",
    "get_directory",
    "reset_directory",
    "Berth",
    # Configuration
    "BerthConfig",
    "build_berth",
    # Errors
    "GuarantorError",
    "InvalidOptionError",
    "InvalidIdentifierError",
    "AlreadyFulfilledError",
    "QualifierTakenError",
    "UnknownQualifierError",
    "ConfigError",
]

__version__ = "0.1.0"
