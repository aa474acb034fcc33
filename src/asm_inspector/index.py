"""
Reference index construction.

Aggregates the declared dependencies of every scanned module into groups keyed
case-insensitively by dependency name, preserving scan order inside each group.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .error_handling import VersionParseError, log_ingestion_error
from .models import DependencyReference, IngestionError, ModuleIdentity, ModuleRecord
from .structured_logging import get_analysis_logger
from .version import AssemblyVersion


@dataclass
class ReferenceGroup:
    """All references that named one dependency, in scan order."""

    name: str
    references: List[DependencyReference] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.name.casefold()

    def __len__(self) -> int:
        return len(self.references)

    def __iter__(self) -> Iterator[DependencyReference]:
        return iter(self.references)


class ReferenceIndex:
    """
    Insertion-ordered multi-map from dependency name to ReferenceGroup.

    Lookups are case-insensitive; a group keeps the spelling under which the
    dependency was first seen.
    """

    def __init__(self):
        self._groups: Dict[str, ReferenceGroup] = {}

    def add(self, reference: DependencyReference) -> None:
        key = reference.dependency_name.casefold()
        group = self._groups.get(key)
        if group is None:
            group = ReferenceGroup(name=reference.dependency_name)
            self._groups[key] = group
        group.references.append(reference)

    def get(self, name: str) -> Optional[ReferenceGroup]:
        return self._groups.get(name.casefold())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.casefold() in self._groups

    def __len__(self) -> int:
        return len(self._groups)

    def __iter__(self) -> Iterator[ReferenceGroup]:
        return iter(self._groups.values())

    def sorted_groups(self) -> List[ReferenceGroup]:
        """Groups in ascending name order (case-insensitive, exact name breaks ties)."""
        return sorted(self._groups.values(), key=lambda g: (g.key, g.name))


@dataclass
class IndexResult:
    """Outcome of an index build: the index plus every dropped entry."""

    index: ReferenceIndex
    errors: List[IngestionError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


class InstalledLookup:
    """Read-only, case-insensitive map from module name to the installed identity."""

    def __init__(self, identities: Iterable[ModuleIdentity] = ()):
        self._modules: Dict[str, ModuleIdentity] = {}
        logger = get_analysis_logger()
        for identity in identities:
            if identity.key in self._modules:
                # First module scanned wins
                logger.warning(
                    "duplicate_installed_module",
                    module_name=identity.name,
                    kept_path=self._modules[identity.key].path,
                    ignored_path=identity.path,
                )
                continue
            self._modules[identity.key] = identity

    def get(self, name: str) -> Optional[ModuleIdentity]:
        return self._modules.get(name.casefold())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.casefold() in self._modules

    def __len__(self) -> int:
        return len(self._modules)


ModuleInput = Tuple[ModuleIdentity, Iterable[Tuple[str, str]]]


def _as_pairs(modules: Iterable) -> Iterator[ModuleInput]:
    """Accept ModuleRecord objects or (identity, [(name, version), ...]) pairs."""
    for item in modules:
        if isinstance(item, ModuleRecord):
            yield item.identity, [(dep.name, dep.version) for dep in item.dependencies]
        else:
            identity, dependencies = item
            yield identity, dependencies


def build_index(modules: Iterable) -> IndexResult:
    """
    Build the reference index from scanned modules.

    Modules are consumed in the order given; callers are expected to have
    sorted them. Every declared dependency becomes one reference, duplicates
    included. A dependency whose version cannot be parsed is dropped and
    recorded as an IngestionError; the rest of the module is still indexed.

    Args:
        modules: ModuleRecord objects or (ModuleIdentity, [(name, version)]) pairs

    Returns:
        IndexResult: The index and the ingestion errors encountered
    """
    index = ReferenceIndex()
    errors: List[IngestionError] = []

    for identity, dependencies in _as_pairs(modules):
        for dependency_name, raw_version in dependencies:
            try:
                version = AssemblyVersion.parse(raw_version)
            except VersionParseError as e:
                error = IngestionError(
                    module_name=identity.name,
                    dependency_name=dependency_name,
                    raw_version=str(raw_version),
                    message=str(e),
                )
                errors.append(error)
                log_ingestion_error(
                    str(e),
                    identity.name,
                    dependency_name,
                    raw_version=str(raw_version),
                    exception=e,
                )
                continue

            index.add(
                DependencyReference(
                    dependency_name=dependency_name,
                    requested_version=version,
                    requesting_module=identity,
                )
            )

    return IndexResult(index=index, errors=errors)


def build_installed_lookup(identities: Iterable[ModuleIdentity]) -> InstalledLookup:
    """Build the installed-module lookup from scanned identities."""
    return InstalledLookup(identities)
