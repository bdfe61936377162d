"""Main CLI entry point and preprocessor protocol handling."""

import logging
import sys
from pathlib import Path
from typing import Any

import click
import msgspec
from click.exceptions import Exit
from rich.console import Console
from rich.markup import escape

from mdbib import __version__
from mdbib.config import load_table, log_level_from_env
from mdbib.core.models import Book
from mdbib.exceptions import ConfigError, MdbibError
from mdbib.preprocessor import BibliographyPreprocessor, PreprocessorContext

logger = logging.getLogger(__name__)

SUPPORTED_MDBOOK_VERSION = "0.4"


def setup_logging(
    verbose: bool = False, quiet: bool = False, debug: bool = False
) -> None:
    """Configure logging based on CLI flags.

    Without flags the level comes from ``MDBIB_LOG`` (default INFO).
    Records always go to stderr.
    """
    if quiet:
        level = logging.WARNING
    elif verbose or debug:
        level = logging.DEBUG
    else:
        level = log_level_from_env()

    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
        if not debug
        else "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


def create_console(no_color: bool = False) -> Console:
    """Create a Rich console writing to stderr."""
    return Console(
        stderr=True,
        soft_wrap=True,
        no_color=no_color,
        highlight=not no_color,
        color_system=None if no_color else "auto",
    )


def parse_input(data: bytes) -> tuple[PreprocessorContext, Book]:
    """Decode the ``[context, book]`` pair sent by mdBook.

    Raises:
        ValueError: If the payload is not a two-element JSON array
    """
    try:
        payload = msgspec.json.decode(data)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid preprocessor input: {e}") from e

    if not isinstance(payload, list) or len(payload) != 2:
        raise ValueError("Preprocessor input must be a [context, book] array")

    raw_context, raw_book = payload
    if not isinstance(raw_book, dict):
        raise ValueError("Preprocessor input book must be a JSON object")
    try:
        context = msgspec.convert(raw_context, PreprocessorContext)
        book = Book.from_builtins(raw_book)
    except msgspec.ValidationError as e:
        raise ValueError(f"Invalid preprocessor input: {e}") from e
    return context, book


def check_mdbook_version(context: PreprocessorContext, console: Console) -> None:
    version = context.mdbook_version
    if version and not version.startswith(SUPPORTED_MDBOOK_VERSION):
        console.print(
            f"[yellow]Warning:[/yellow] The bib preprocessor was built against "
            f"mdbook version {SUPPORTED_MDBOOK_VERSION}, but we're being called "
            f"from version {version}"
        )


class MdbibGroup(click.Group):
    """Custom group that reports errors on the stderr console."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except KeyboardInterrupt:
            ctx.exit(130)
        except (click.ClickException, click.Abort, Exit, SystemExit):
            raise
        except Exception as e:
            debug = (ctx.obj or {}).get("debug", False)
            if debug:
                raise
            console = (ctx.obj or {}).get("console") or create_console()
            if isinstance(e, MdbibError):
                console.print(f"[red]Error:[/red] {escape(str(e))}")
            else:
                console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            ctx.exit(1)


@click.group(cls=MdbibGroup, invoke_without_command=True)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Only log warnings and errors")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("--debug", is_flag=True, help="Enable debug mode with full tracebacks")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="YAML file overriding the book's preprocessor.bib table",
)
@click.version_option(
    version=__version__, prog_name="mdbib", message="mdbib version %(version)s"
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    no_color: bool,
    debug: bool,
    config: Path | None,
) -> None:
    """mdBook preprocessor for citations and bibliographies.

    Without a command, reads the [context, book] JSON pair from stdin and
    writes the processed book JSON to stdout.
    """
    setup_logging(verbose=verbose, quiet=quiet, debug=debug)
    console = create_console(no_color=no_color)

    overrides: dict[str, Any] | None = None
    if config:
        try:
            overrides = load_table(config)
        except ConfigError as e:
            if debug:
                raise
            console.print(f"[red]Error loading config file:[/red] {escape(str(e))}")
            ctx.exit(1)

    ctx.obj = {"console": console, "debug": debug, "overrides": overrides}

    if ctx.invoked_subcommand is None:
        run_preprocessor(ctx)


def run_preprocessor(ctx: click.Context) -> None:
    """Process the book read from stdin and write it to stdout."""
    console: Console = ctx.obj["console"]
    stdin = click.get_binary_stream("stdin")

    try:
        context, book = parse_input(stdin.read())
    except ValueError as e:
        if ctx.obj["debug"]:
            raise
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        ctx.exit(1)

    check_mdbook_version(context, console)

    preprocessor = BibliographyPreprocessor(overrides=ctx.obj["overrides"])
    processed = preprocessor.run(context, book)

    stdout = click.get_binary_stream("stdout")
    stdout.write(msgspec.json.encode(processed.to_builtins()))
    stdout.flush()


@cli.command()
@click.argument("renderer")
@click.pass_context
def supports(ctx: click.Context, renderer: str) -> None:
    """Check whether RENDERER is supported (exit 0) or not (exit 1)."""
    preprocessor = BibliographyPreprocessor(overrides=ctx.obj["overrides"])
    supported = preprocessor.supports_renderer(renderer)
    logger.debug("Renderer %s supported: %s", renderer, supported)
    ctx.exit(0 if supported else 1)


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        sys.exit(130)
