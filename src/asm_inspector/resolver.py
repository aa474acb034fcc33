"""
Conflict resolution for reference groups.

For each dependency name the resolver decides whether the group is a conflict,
orders its versions for display, assigns a colour slot per version and, when
the dependency is itself installed, computes the binding redirect.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from .error_handling import ResolutionInvariantError
from .index import InstalledLookup, ReferenceGroup, ReferenceIndex, build_index, build_installed_lookup
from .models import (
    NEUTRAL_CULTURE,
    UNSIGNED_TOKEN,
    GroupReport,
    IngestionError,
    ModuleIdentity,
    ModuleRecord,
    RedirectDescriptor,
    ReportRow,
    ResolveOptions,
    VersionMarker,
)
from .version import AssemblyVersion

PALETTE: Sequence[VersionMarker] = tuple(VersionMarker)
PALETTE_SIZE = len(PALETTE)


def is_system_name(name: str, prefixes: Sequence[str]) -> bool:
    """Prefix match against the configured system prefixes (case-sensitive)."""
    return any(name.startswith(prefix) for prefix in prefixes)


def distinct_raw_strings(group: ReferenceGroup) -> List[str]:
    """Distinct requested version strings, in order of first appearance."""
    seen: Dict[str, None] = {}
    for reference in group:
        seen.setdefault(reference.requested_version.raw, None)
    return list(seen)


def is_conflict(group: ReferenceGroup) -> bool:
    """A group conflicts when it requests more than one distinct version string."""
    return len(distinct_raw_strings(group)) > 1


def parsed_ordering(
    group: ReferenceGroup, bin_version: Optional[AssemblyVersion] = None
) -> List[str]:
    """
    Display order of the group's distinct version strings.

    Versions are sorted descending by parsed value; equal values keep their
    first-appearance order. The installed version, if any, is moved (or
    inserted) at the front.
    """
    parsed: Dict[str, AssemblyVersion] = {}
    for reference in group:
        parsed.setdefault(reference.requested_version.raw, reference.requested_version)

    # list.sort stays stable with reverse=True
    ordering = sorted(parsed, key=lambda raw: parsed[raw], reverse=True)

    if bin_version is not None:
        bin_raw = str(bin_version)
        if bin_raw in ordering:
            ordering.remove(bin_raw)
        ordering.insert(0, bin_raw)

    return ordering


def classification_slot(index: int) -> int:
    return index % PALETTE_SIZE


def marker_for_slot(slot: int) -> VersionMarker:
    return PALETTE[classification_slot(slot)]


def public_key_token_hex(token: bytes) -> str:
    """Lowercase hex rendering of a public key token, "null" when unsigned."""
    if not token:
        return UNSIGNED_TOKEN
    return "".join(f"{byte:02x}" for byte in token)


def build_rows(group: ReferenceGroup, ordering: List[str]) -> List[ReportRow]:
    """One row per reference, in scan order, coloured by position in ``ordering``."""
    rows = []
    for reference in group:
        raw = reference.requested_version.raw
        try:
            position = ordering.index(raw)
        except ValueError:
            raise ResolutionInvariantError(
                f"Version '{raw}' of '{group.name}' missing from display ordering"
            ) from None
        slot = classification_slot(position)
        rows.append(
            ReportRow(
                version=raw,
                module_name=reference.requesting_module.name,
                slot=slot,
                marker=marker_for_slot(slot),
            )
        )
    return rows


def build_redirect(installed: ModuleIdentity, group: ReferenceGroup) -> RedirectDescriptor:
    """
    Redirect every requested version of the group to the installed one.

    The ceiling is the highest requested version, even when it exceeds the
    installed version.
    """
    ceiling = max(reference.requested_version for reference in group)
    return RedirectDescriptor(
        name=installed.name,
        public_key_token_hex=public_key_token_hex(installed.public_key_token),
        culture=installed.culture or NEUTRAL_CULTURE,
        old_version_ceiling=ceiling,
        new_version=installed.version,
    )


def resolve_group(
    group: ReferenceGroup, installed: InstalledLookup, options: ResolveOptions
) -> Optional[GroupReport]:
    """Resolve a single group, returning None when it is filtered out."""
    if options.exclude_system_named and is_system_name(group.name, options.system_prefixes):
        return None

    conflict = is_conflict(group)
    if not options.include_non_conflicting and not conflict:
        return None

    installed_module = installed.get(group.name)
    bin_version = installed_module.version if installed_module else None

    ordering = parsed_ordering(group, bin_version)
    rows = build_rows(group, ordering)

    redirect = None
    if options.emit_redirects and installed_module is not None:
        redirect = build_redirect(installed_module, group)

    return GroupReport(
        name=group.name,
        bin_version=bin_version,
        version_order=ordering,
        rows=rows,
        is_conflict=conflict,
        redirect=redirect,
    )


def resolve(
    index: ReferenceIndex,
    installed: InstalledLookup,
    options: Optional[ResolveOptions] = None,
) -> Iterator[GroupReport]:
    """
    Resolve every group of the index in ascending name order.

    Groups are produced lazily; a consumer may stop between groups.
    """
    options = options or ResolveOptions()
    for group in index.sorted_groups():
        report = resolve_group(group, installed, options)
        if report is not None:
            yield report


def collect_redirects(reports: Iterable[GroupReport]) -> List[RedirectDescriptor]:
    """Redirect descriptors of the given reports, in report order."""
    return [report.redirect for report in reports if report.redirect is not None]


@dataclass
class AnalysisResult:
    """Everything a reporting layer needs for one analysed directory."""

    reports: List[GroupReport] = field(default_factory=list)
    redirects: List[RedirectDescriptor] = field(default_factory=list)
    ingestion_errors: List[IngestionError] = field(default_factory=list)
    module_count: int = 0
    options: ResolveOptions = field(default_factory=ResolveOptions)

    @property
    def conflicts(self) -> List[GroupReport]:
        return [report for report in self.reports if report.is_conflict]

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0


def analyse_modules(
    records: Iterable[ModuleRecord], options: Optional[ResolveOptions] = None
) -> AnalysisResult:
    """Index the given module records and resolve every group."""
    options = options or ResolveOptions()
    records = list(records)

    index_result = build_index(records)
    installed = build_installed_lookup(record.identity for record in records)
    reports = list(resolve(index_result.index, installed, options))

    return AnalysisResult(
        reports=reports,
        redirects=collect_redirects(reports),
        ingestion_errors=index_result.errors,
        module_count=len(records),
        options=options,
    )
