"""
Reporting and output formatting for reference analysis results.

Provides colour-coded console output using the Rich library, the binding
redirect configuration fragment, and a JSON document form of the analysis.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .models import GroupReport, IngestionError, RedirectDescriptor
from .reader import ReadResult
from .resolver import AnalysisResult

BINDING_REDIRECT_TEMPLATE = """      <dependentAssembly>
        <assemblyIdentity name="{name}" publicKeyToken="{token}" culture="{culture}" />
        <bindingRedirect oldVersion="{old_version}" newVersion="{new_version}" />
      </dependentAssembly>"""

ASSEMBLY_BINDING_START = """  <runtime>
    <assemblyBinding xmlns="urn:schemas-microsoft-com:asm.v1">"""

ASSEMBLY_BINDING_END = """    </assemblyBinding>
  </runtime>"""


def render_binding_redirect(redirect: RedirectDescriptor) -> str:
    """Render one <dependentAssembly> element."""
    return BINDING_REDIRECT_TEMPLATE.format(
        name=redirect.name,
        token=redirect.public_key_token_hex,
        culture=redirect.culture,
        old_version=redirect.old_version_range,
        new_version=redirect.new_version,
    )


def render_binding_redirects(redirects: Sequence[RedirectDescriptor]) -> str:
    """Render the complete <runtime> configuration fragment."""
    lines = [ASSEMBLY_BINDING_START]
    lines.extend(render_binding_redirect(redirect) for redirect in redirects)
    lines.append(ASSEMBLY_BINDING_END)
    return "\n".join(lines)


class ReferenceReporter:
    """Formats and displays reference analysis results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(soft_wrap=True)

    def print_header(self, directory: str) -> None:
        self.console.print("Check assemblies in:")
        self.console.print(escape(directory))
        self.console.print()

    def print_skipped(self, results: Sequence[ReadResult]) -> None:
        """Print one warning per module file that failed to load."""
        for result in results:
            if result.is_warning:
                self.console.print(
                    f"Failed to load assembly '{escape(str(result.path))}': {escape(result.message)}",
                    style="yellow",
                )

    def print_ingestion_errors(self, errors: Sequence[IngestionError]) -> None:
        for error in errors:
            self.console.print(
                f"⚠️  {escape(error.module_name)}: skipped reference to "
                f"{escape(error.dependency_name)} ({escape(error.message)})",
                style="yellow",
            )

    def print_group(self, report: GroupReport) -> None:
        """Print one reference group with a colour per version."""
        self.console.print(f"[white]Reference: [/white][grey70]{escape(report.name)}[/grey70]")

        if report.bin_version is not None:
            self.console.print(f"Bin version: {report.bin_version}", style="grey70")

        for row in report.rows:
            color = row.marker.value
            self.console.print(
                f"   [{color}]{escape(row.version)}[/{color}]"
                f"[white] by [/white][grey70]{escape(row.module_name)}[/grey70]"
            )

        self.console.print()

    def print_redirects(self, redirects: Sequence[RedirectDescriptor]) -> None:
        self.console.print("Assembly binding redirects to add to config file:")
        self.console.print(
            render_binding_redirects(redirects),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )

    def print_summary(self, result: AnalysisResult) -> None:
        conflict_count = len(result.conflicts)
        if conflict_count:
            text = (
                f"[bold yellow]{conflict_count} conflicting reference(s)[/bold yellow] "
                f"across {result.module_count} module(s)"
            )
            border = "yellow"
        else:
            text = f"[bold green]No conflicting references[/bold green] across {result.module_count} module(s)"
            border = "green"
        self.console.print(Panel(text, title="[bold blue]asm-inspector[/bold blue]", border_style=border))

    def print_analysis(
        self,
        result: AnalysisResult,
        directory: str,
        skipped: Sequence[ReadResult] = (),
        summary: bool = False,
    ) -> None:
        """
        Print the full report for an analysed directory.

        Args:
            result: Resolution output
            directory: Directory the modules were read from
            skipped: Read results of files that were not analysed
            summary: Whether to finish with a summary panel
        """
        self.print_header(directory)
        self.print_skipped(skipped)
        self.print_ingestion_errors(result.ingestion_errors)

        if not result.options.include_non_conflicting:
            self.console.print("Detailing only conflicting assembly references.")

        for report in result.reports:
            self.print_group(report)

        if result.options.emit_redirects:
            self.print_redirects(result.redirects)

        if summary:
            self.print_summary(result)


def _group_to_dict(report: GroupReport) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "name": report.name,
        "bin_version": str(report.bin_version) if report.bin_version else None,
        "is_conflict": report.is_conflict,
        "versions": report.version_order,
        "references": [
            {
                "version": row.version,
                "referenced_by": row.module_name,
                "slot": row.slot,
                "marker": row.marker.value,
            }
            for row in report.rows
        ],
    }
    if report.redirect is not None:
        data["redirect"] = redirect_to_dict(report.redirect)
    return data


def redirect_to_dict(redirect: RedirectDescriptor) -> Dict[str, str]:
    return {
        "name": redirect.name,
        "public_key_token": redirect.public_key_token_hex,
        "culture": redirect.culture,
        "old_version": redirect.old_version_range,
        "new_version": str(redirect.new_version),
    }


def analysis_to_dict(
    result: AnalysisResult, directory: str, skipped: Sequence[ReadResult] = ()
) -> Dict[str, Any]:
    """Build the JSON document for an analysis."""
    skipped_files: List[Dict[str, str]] = [
        {"path": str(r.path), "reason": r.skip_reason.value, "message": r.message}
        for r in skipped
        if r.skip_reason is not None
    ]
    return {
        "directory": directory,
        "module_count": result.module_count,
        "options": {
            "include_non_conflicting": result.options.include_non_conflicting,
            "exclude_system_named": result.options.exclude_system_named,
            "emit_redirects": result.options.emit_redirects,
        },
        "summary": {
            "reported_groups": len(result.reports),
            "conflicts": len(result.conflicts),
            "ingestion_errors": len(result.ingestion_errors),
            "skipped_files": len(skipped_files),
        },
        "groups": [_group_to_dict(report) for report in result.reports],
        "binding_redirects": [redirect_to_dict(r) for r in result.redirects],
        "ingestion_errors": [
            {
                "module": e.module_name,
                "dependency": e.dependency_name,
                "raw_version": e.raw_version,
                "message": e.message,
            }
            for e in result.ingestion_errors
        ],
        "skipped_files": skipped_files,
    }


def analysis_to_json(
    result: AnalysisResult, directory: str, skipped: Sequence[ReadResult] = ()
) -> str:
    return json.dumps(analysis_to_dict(result, directory, skipped), indent=2, ensure_ascii=False)
