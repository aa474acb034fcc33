"""Data structures shared by the reader, index, resolver and reporting layers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .version import AssemblyVersion

DEFAULT_SYSTEM_PREFIXES: Tuple[str, ...] = ("System", "mscorlib")
NEUTRAL_CULTURE = "neutral"
UNSIGNED_TOKEN = "null"


@dataclass(frozen=True)
class ModuleIdentity:
    """A compiled module physically present in the scanned directory."""

    name: str
    version: AssemblyVersion
    public_key_token: bytes = b""
    culture: str = ""
    path: Optional[str] = field(default=None, compare=False)

    @property
    def key(self) -> str:
        """Case-insensitive identity key."""
        return self.name.casefold()


@dataclass(frozen=True)
class DeclaredDependency:
    """A dependency as declared in module metadata, version not yet validated."""

    name: str
    version: str


@dataclass(frozen=True)
class ModuleRecord:
    """A successfully read module together with its declared dependencies."""

    identity: ModuleIdentity
    dependencies: Tuple[DeclaredDependency, ...] = ()


@dataclass(frozen=True)
class DependencyReference:
    """One module's declaration that it needs some version of a dependency."""

    dependency_name: str
    requested_version: AssemblyVersion
    requesting_module: ModuleIdentity


@dataclass(frozen=True)
class IngestionError:
    """A dependency entry that was dropped while building the index."""

    module_name: str
    dependency_name: str
    raw_version: str
    message: str


class VersionMarker(Enum):
    """Visual classification of a version within a reference group."""

    GREEN = "green"
    RED = "red"
    YELLOW = "yellow"
    BLUE = "blue"
    CYAN = "cyan"
    MAGENTA = "magenta"


@dataclass(frozen=True)
class ReportRow:
    """A single reference line: which module asked for which version."""

    version: str
    module_name: str
    slot: int
    marker: VersionMarker


@dataclass(frozen=True)
class RedirectDescriptor:
    """A resolved binding redirect for one dependency."""

    name: str
    public_key_token_hex: str
    culture: str
    old_version_ceiling: AssemblyVersion
    new_version: AssemblyVersion

    @property
    def old_version_range(self) -> str:
        return f"0.0.0.0-{self.old_version_ceiling}"


@dataclass(frozen=True)
class GroupReport:
    """Resolution output for one dependency name."""

    name: str
    bin_version: Optional[AssemblyVersion]
    version_order: List[str]
    rows: List[ReportRow]
    is_conflict: bool
    redirect: Optional[RedirectDescriptor] = None


@dataclass(frozen=True)
class ResolveOptions:
    """Mode flags controlling which groups are reported and what is emitted."""

    include_non_conflicting: bool = False
    exclude_system_named: bool = False
    emit_redirects: bool = False
    system_prefixes: Tuple[str, ...] = DEFAULT_SYSTEM_PREFIXES
