import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import click
from rich.console import Console

from .cli_config import (
    VALID_OUTPUT_FORMATS,
    ComprehensiveConfig,
    apply_config_data,
    create_sample_config,
    get_config,
    load_config_file,
    set_config,
    validate_config_values,
)
from .error_handling import setup_error_handling
from .reader import ReadResult, find_module_files, locate_module_directory, read_directory
from .reporting import ReferenceReporter, analysis_to_json
from .resolver import AnalysisResult, analyse_modules
from .structured_logging import (
    configure_logging,
    log_analysis_complete,
    log_analysis_start,
)

__version__ = "1.0.0"

console = Console(soft_wrap=True)

LEGACY_MODES = ("all", "nonsystem", "bindingredirects")


def split_legacy_modes(
    directory: Optional[str], modes: Sequence[str]
) -> Tuple[Optional[str], List[str]]:
    """
    Separate the directory argument from legacy mode keywords.

    ``asm-inspector analyse all nonsystem`` analyses the current directory, so
    a first argument that is a mode keyword and not an existing path is
    treated as a mode.
    """
    modes = [m.lower() for m in modes]
    if directory and directory.lower() in LEGACY_MODES and not Path(directory).exists():
        modes.insert(0, directory.lower())
        directory = None

    unknown = [m for m in modes if m not in LEGACY_MODES]
    if unknown:
        raise click.BadParameter(
            f"Unknown mode(s): {', '.join(unknown)}. Expected any of: {', '.join(LEGACY_MODES)}",
            param_hint="MODES",
        )
    return directory, modes


def apply_cli_overrides(
    config: ComprehensiveConfig,
    modes: Sequence[str],
    include_all: bool,
    non_system: bool,
    binding_redirects: bool,
    fail_on_conflict: bool,
    output_format: Optional[str],
    output_file: Optional[str],
    quiet: bool,
    verbose: bool,
) -> ComprehensiveConfig:
    """Return a copy of ``config`` with command-line flags applied."""
    analysis = replace(
        config.analysis,
        include_non_conflicting=config.analysis.include_non_conflicting or include_all or "all" in modes,
        exclude_system_named=config.analysis.exclude_system_named or non_system or "nonsystem" in modes,
        emit_redirects=config.analysis.emit_redirects or binding_redirects or "bindingredirects" in modes,
        fail_on_conflict=config.analysis.fail_on_conflict or fail_on_conflict,
        output_format=output_format or config.analysis.output_format,
        output_file=output_file or config.analysis.output_file,
        quiet=quiet or config.analysis.quiet,
        verbose=verbose or config.analysis.verbose,
    )
    return replace(config, analysis=analysis)


def run_analysis(directory: Path) -> Tuple[AnalysisResult, List[ReadResult]]:
    """Read every module of ``directory`` and resolve its references."""
    config = get_config()
    read_results = list(read_directory(directory))
    records = [r.record for r in read_results if r.ok]
    skipped = [r for r in read_results if not r.ok]
    result = analyse_modules(records, config.analysis.to_resolve_options())
    return result, skipped


def output_json_results(
    result: AnalysisResult,
    directory: str,
    skipped: Sequence[ReadResult],
    output_file: Optional[str] = None,
) -> None:
    """Export results as JSON."""
    json_output = analysis_to_json(result, directory, skipped)

    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(json_output)
        console.print(f"✅ Results saved to {output_file}", style="green")
    else:
        click.echo(json_output)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    🔍 asm-inspector: assembly reference conflict analyser

    Lists every version of every referenced assembly in a build output
    directory, highlights conflicting versions and suggests binding
    redirects.
    """
    if version:
        console.print(f"asm-inspector version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.argument("directory", required=False)
@click.argument("modes", nargs=-1)
@click.option(
    "--all",
    "include_all",
    is_flag=True,
    help="Show all references, not only conflicting ones",
)
@click.option(
    "--non-system",
    is_flag=True,
    help="Ignore references whose name starts with System or mscorlib",
)
@click.option(
    "--binding-redirects",
    is_flag=True,
    help="Print binding redirects for references that are present in the directory",
)
@click.option(
    "--fail-on-conflict",
    is_flag=True,
    help="Exit with code 1 when a conflicting reference is found",
)
@click.option(
    "--output-format",
    type=click.Choice(VALID_OUTPUT_FORMATS, case_sensitive=False),
    default=None,
    help="Output format (default: console)",
)
@click.option(
    "--output-file",
    type=click.Path(dir_okay=False, writable=True),
    help="Write JSON results to this file",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--verbose", "-v", is_flag=True, help="Enable detailed logging")
def analyse(
    directory: Optional[str],
    modes: Tuple[str, ...],
    include_all: bool,
    non_system: bool,
    binding_redirects: bool,
    fail_on_conflict: bool,
    output_format: Optional[str],
    output_file: Optional[str],
    quiet: bool,
    verbose: bool,
):
    """
    Analyse the assemblies in DIRECTORY (default: current directory).

    MODES accepts the keywords all, nonsystem and bindingredirects as
    shorthands for the matching options.
    """
    directory, modes = split_legacy_modes(directory, modes)

    config = apply_cli_overrides(
        get_config(),
        modes,
        include_all,
        non_system,
        binding_redirects,
        fail_on_conflict,
        output_format.lower() if output_format else None,
        output_file,
        quiet,
        verbose,
    )
    analysis = config.analysis
    if analysis.output_file and analysis.output_format != "json":
        raise click.ClickException("Output file can only be used with JSON format")

    log_level = "DEBUG" if analysis.verbose else config.logging.log_level
    configure_logging(
        log_level,
        enable_json=config.logging.enable_json,
        log_format=config.logging.log_format,
    )
    setup_error_handling(log_level=getattr(logging, log_level.upper(), logging.WARNING))

    target = Path(directory).resolve() if directory else Path.cwd()
    if not target.is_dir():
        raise click.ClickException(f"Directory: '{target}' does not exist.")

    set_config(config)

    reporter = ReferenceReporter(console)
    show_console = analysis.output_format == "console"

    module_directory = locate_module_directory(target)
    if module_directory != target:
        click.echo(f"No dll files found in directory: '{target}'", err=not show_console)
    if module_directory is None:
        return

    analysis_id = f"analysis_{int(time.time())}"
    started = time.monotonic()

    try:
        log_analysis_start(
            analysis_id, str(module_directory), len(find_module_files(module_directory))
        )
        result, skipped = run_analysis(module_directory)
    except OSError as e:
        raise click.ClickException(f"Analysis failed: {e}")

    if show_console:
        if analysis.quiet:
            reporter.print_skipped(skipped)
            for report in result.conflicts:
                console.print(f"❌ Conflict: {report.name}", style="red")
        else:
            reporter.print_analysis(
                result, str(module_directory), skipped, summary=analysis.verbose
            )
    else:
        output_json_results(result, str(module_directory), skipped, analysis.output_file)

    log_analysis_complete(
        analysis_id,
        int((time.monotonic() - started) * 1000),
        result.module_count,
        len(result.reports),
        len(result.conflicts),
        len(result.ingestion_errors),
    )

    if analysis.fail_on_conflict and result.has_conflicts:
        sys.exit(1)


@cli.command()
def info():
    """Show information about asm-inspector."""
    console.print(f"[bold blue]asm-inspector[/bold blue] version {__version__}")
    console.print()
    console.print(
        "Detects assemblies that are referenced at several versions by the modules\n"
        "of one build output directory, and suggests binding redirects that pin\n"
        "every reference to the version actually deployed."
    )
    console.print()
    console.print("[bold]Usage:[/bold]")
    console.print(
        "  asm-inspector analyse [DIRECTORY] [all] [nonsystem] [bindingredirects]",
        markup=False,
    )
    console.print("[bold]Examples:[/bold]")
    console.print(r"  asm-inspector analyse C:\Source\My.Solution\My.Project\bin\Debug", markup=False)
    console.print(r"  asm-inspector analyse C:\Source\My.Solution\My.Project\bin\Debug all", markup=False)
    console.print("  asm-inspector analyse all nonsystem", markup=False)
    console.print("  asm-inspector analyse --binding-redirects --output-format json", markup=False)


@cli.group()
def config():
    """Manage configuration."""
    pass


@config.command("init")
@click.option(
    "--path",
    default=".asm-inspector.json",
    help="Where to write the configuration file",
    type=click.Path(dir_okay=False),
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Write a sample configuration file."""
    config_path = Path(path)
    if config_path.exists() and not force:
        raise click.ClickException(
            f"Config file already exists: {config_path} (use --force to overwrite)"
        )

    config_path.write_text(create_sample_config(), encoding="utf-8")
    console.print(f"✅ Sample configuration written to {config_path}", style="green")


@config.command("show")
def config_show():
    """Show the effective configuration."""
    console.print_json(data=get_config().to_dict())


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def config_validate(config_file: str):
    """Validate a configuration file."""
    data = load_config_file(Path(config_file))
    if not isinstance(data, dict):
        raise click.ClickException(f"Could not read configuration from {config_file}")

    candidate = ComprehensiveConfig()
    apply_config_data(candidate, data)
    errors = validate_config_values(candidate)
    if errors:
        for error in errors:
            console.print(f"  • {error}", style="red")
        raise click.ClickException("Configuration is invalid")

    console.print("✅ Configuration is valid", style="green")


if __name__ == "__main__":
    cli()
