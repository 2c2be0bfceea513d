import asyncio
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .cli_config import create_sample_config, get_config, load_config
from .cloner import Repository, clone_organisation
from .error_handling import CloneError, ConfigurationError, DepgrokError
from .registry import parse_seed_names
from .reporting import SearchReporter, create_progress_spinner, output_json_results
from .search import SearchOptions, SearchResult, run_search
from .structured_logging import configure_logging
from .walker import ErrorPolicy, WalkStats

__version__ = "0.2.0"

console = Console()
err_console = Console(stderr=True)

EXIT_INCOMPLETE = 2


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    🔍 depgrok: find repositories that depend on a set of names

    Analyses a set of code repositories for references that depend on an
    input set, directly or through intermediate files.
    """
    if version:
        console.print(f"depgrok version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.option(
    "--deps",
    help="The dependencies to search for, provided as a white-space separated list",
)
@click.option(
    "--dir",
    "directory",
    help="The directory containing code repositories, in which to search",
)
@click.option(
    "--depth",
    type=int,
    help=(
        "The depth of the dependency tree to construct. 1 finds direct relationships "
        "(X -> Y); 2 also finds relationships through one intermediate file "
        "(X -> Y -> Z). Default from config or 1"
    ),
)
@click.option(
    "--exclude",
    multiple=True,
    help=(
        "A glob to exclude from the search, e.g. *.md. All other files are searched. "
        "Cannot be used with --include"
    ),
)
@click.option(
    "--include",
    multiple=True,
    help=(
        "A glob to include in the search, e.g. *.cs. Only matching files are "
        "searched. Cannot be used with --exclude"
    ),
)
@click.option(
    "--max-workers",
    type=int,
    help="Maximum number of files and directories processed at once (default: 2x CPUs)",
)
@click.option(
    "--on-error",
    type=click.Choice(["abort", "skip"], case_sensitive=False),
    help="Abort on the first unreadable path, or skip it and report it (default: abort)",
)
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Output format for results",
)
@click.option(
    "--output-file",
    "-o",
    type=click.Path(),
    help="Save results to file (JSON format only)",
)
@click.option("--quiet", "-q", is_flag=True, help="Only print the diagrams")
@click.option("--debug", is_flag=True, help="Prints additional debug information to stderr")
def search(
    deps: Optional[str],
    directory: Optional[str],
    depth: Optional[int],
    exclude: Tuple[str, ...],
    include: Tuple[str, ...],
    max_workers: Optional[int],
    on_error: Optional[str],
    output_format: Optional[str],
    output_file: Optional[str],
    quiet: bool,
    debug: bool,
) -> None:
    """
    Search a directory of code repositories for references to dependencies,
    returning the repositories that match, directly or indirectly.

    Examples:

      depgrok search --deps "UserService OrderQueue" --dir ./repos

      depgrok search --deps UserService --dir ./repos --depth 2 --exclude "*.md"

      depgrok search --deps UserService --dir ./repos --include "*.cs" --output-format json
    """
    try:
        config = load_config()
        configure_logging(
            "DEBUG" if debug else config.logging.log_level, config.logging.log_file
        )

        if not deps or not directory:
            raise ConfigurationError("--deps and --dir are required flags")

        final_format = (output_format or config.search.output_format).lower()
        if output_file and final_format != "json":
            raise ConfigurationError("Output file can only be used with JSON format")

        options = SearchOptions(
            seeds=parse_seed_names(deps),
            root=directory,
            depth=depth if depth is not None else config.search.depth,
            include=list(include) or ([] if exclude else config.search.include),
            exclude=list(exclude) or ([] if include else config.search.exclude),
            max_workers=max_workers if max_workers is not None else config.search.max_workers,
            error_policy=ErrorPolicy((on_error or config.search.on_error).lower()),
        )

        show_progress = not quiet and final_format == "console"
        result = _run_with_progress(options, show_progress)

        if final_format == "json":
            output_json_results(result, output_file)
            if output_file and not quiet:
                err_console.print(f"✅ Results saved to {output_file}", style="green")
        else:
            SearchReporter(console, err_console).print_search_results(result, quiet=quiet)

        if not result.is_complete:
            sys.exit(EXIT_INCOMPLETE)

    except KeyboardInterrupt:
        err_console.print("\n⚠️  Search interrupted by user", style="yellow")
        sys.exit(130)
    except DepgrokError as e:
        err_console.print(f"❌ Error: {escape(str(e))}", style="red", soft_wrap=True)
        sys.exit(1)


def _run_with_progress(options: SearchOptions, show_progress: bool) -> SearchResult:
    if not show_progress:
        return run_search(options)

    with create_progress_spinner(err_console) as progress:
        task = progress.add_task(f"Searching level 1 of {options.depth}...", total=None)

        def on_level(stats: WalkStats) -> None:
            next_level = stats.level + 2
            if next_level <= options.depth:
                progress.update(
                    task, description=f"Searching level {next_level} of {options.depth}..."
                )

        return run_search(options, on_level=on_level)


@cli.command()
@click.option("--org", help="The GitHub organisation to clone repositories from")
@click.option(
    "--dir",
    "directory",
    help="The output directory in which to place the cloned repositories",
)
@click.option(
    "--token",
    envvar="DEPGROK_GITHUB_TOKEN",
    help="The Personal Access Token required to authenticate with the GitHub API",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress progress output")
@click.option("--debug", is_flag=True, help="Prints additional debug information to stderr")
def clone(
    org: Optional[str],
    directory: Optional[str],
    token: Optional[str],
    quiet: bool,
    debug: bool,
) -> None:
    """
    Clone every repository of a GitHub organisation, with minimal depth, so
    that their contents can be searched. Assumes SSH access to the organisation.

    Examples:

      depgrok clone --org my-org --dir ./repos --token $GITHUB_TOKEN
    """
    try:
        config = load_config()
        configure_logging(
            "DEBUG" if debug else config.logging.log_level, config.logging.log_file
        )

        if not org or not token or not directory:
            raise ConfigurationError(
                "--org, --token and --dir are required flags for the `clone` command"
            )

        def on_progress(repo: Repository, status: str) -> None:
            if quiet:
                return
            if status == "cloning":
                err_console.print(f"Cloning {repo.name}...", style="cyan")
            else:
                err_console.print(f"Skipping {repo.name}, already present", style="dim")

        summary = asyncio.run(
            clone_organisation(org, token, directory, config.clone, on_progress)
        )

        if not quiet:
            err_console.print(
                f"✅ Cloned {len(summary.cloned)} repos into {directory} "
                f"({len(summary.skipped)} already present)",
                style="green",
                soft_wrap=True,
            )

    except KeyboardInterrupt:
        err_console.print("\n⚠️  Clone interrupted by user", style="yellow")
        sys.exit(130)
    except (CloneError, ConfigurationError) as e:
        err_console.print(f"❌ Error: {escape(str(e))}", style="red", soft_wrap=True)
        sys.exit(1)


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".depgrok.toml",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    config_path.write_text(create_sample_config(), encoding="utf-8")
    console.print(f"✅ Created configuration file at {config_path}", style="green")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current_config = get_config()

    console.print(Panel("[bold blue]🔧 depgrok Configuration[/bold blue]", border_style="blue"))
    console.print_json(data=current_config.to_dict())


if __name__ == "__main__":
    cli()
