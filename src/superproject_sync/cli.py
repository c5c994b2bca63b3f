"""
Command-line interface for superproject gitlink synchronization.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import StaticRules, load_settings
from .models import BranchId, CircularSubscriptionError, SyncError
from .orchestrator import UpdateOrchestrator, UpdatePlan
from . import __version__ as PACKAGE_VERSION


console = Console()
logger = logging.getLogger(__name__)

LOG_ENV = "SUPERPROJECT_SYNC_LOG"


def _print_version(ctx, param, value):
    """Eager option callback to print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"superproject-sync {PACKAGE_VERSION}")
    ctx.exit()


def _default_log_path() -> Path:
    """Determine default log file path (~/.superproject-sync/superproject-sync.log)."""
    env_path = os.environ.get(LOG_ENV)
    if env_path:
        p = Path(env_path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base = Path.home() / ".superproject-sync"
    base.mkdir(parents=True, exist_ok=True)
    return base / "superproject-sync.log"


class SafeConsoleFilter(logging.Filter):
    """Replace characters the console encoding cannot represent.

    File handlers keep full UTF-8 output; only console records are rewritten.
    """

    def __init__(self, encoding: Optional[str] = None):
        super().__init__()
        self.encoding = encoding or getattr(sys.stderr, "encoding", None) or "utf-8"

    def filter(self, record: logging.LogRecord) -> bool:  # always keep the record
        message = record.getMessage()
        try:
            message.encode(self.encoding, errors="strict")
        except UnicodeEncodeError:
            record.msg = message.encode(self.encoding, errors="replace").decode(self.encoding)
            record.args = ()
        return True


def setup_logging(verbose: bool = False, console_level: Optional[str] = None, log_file: Optional[Path] = None) -> Path:
    """Log everything to a rotating file; add a rich console handler on request.

    Returns the log file path.
    """
    log_path = Path(log_file) if log_file else _default_log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    # Clear existing handlers to avoid duplication in tests / repeated invocations
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    file_handler = RotatingFileHandler(
        str(log_path), maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(file_handler)

    if verbose or console_level:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
        }
        ch_level = level_map.get((console_level or "info").lower(), logging.INFO)
        console_handler = RichHandler(console=console, rich_tracebacks=True)
        console_handler.setLevel(ch_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        enc = getattr(console.file, "encoding", None)
        console_handler.addFilter(SafeConsoleFilter(encoding=enc))
        root.addHandler(console_handler)

    return log_path


def _parse_branches(values: Tuple[str, ...]) -> List[BranchId]:
    branches = []
    for value in values:
        try:
            branches.append(BranchId.parse(value))
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="BRANCH")
    return branches


def _build_orchestrator(ctx: click.Context) -> UpdateOrchestrator:
    settings, cfg = load_settings(ctx.obj.get("config_path"))
    rules = StaticRules.from_config(cfg)
    return UpdateOrchestrator.for_repositories(
        ctx.obj["repos_root"],
        settings=settings,
        # Fall back to each project's refs/meta/config when the file declares no rules
        rules=rules if rules.rules else None,
        max_workers=ctx.obj.get("jobs", 1),
    )


@click.group()
@click.option(
    "--version",
    "-V",
    is_flag=True,
    callback=_print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose console logging (INFO)")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Console log level. By default, console logging is disabled.",
)
@click.option(
    "--repos-root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory holding one repository per project (defaults to current directory)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Settings file in git-config format (defaults to $SUPERPROJECT_SYNC_CONFIG)",
)
@click.option("--jobs", "-j", type=int, default=1, show_default=True, help="Projects to update in parallel")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    log_level: Optional[str],
    repos_root: Optional[Path],
    config_path: Optional[Path],
    jobs: int,
) -> None:
    """Superproject Sync - keep superproject gitlinks pointing at the latest submodule commits."""
    log_path = setup_logging(verbose, console_level=log_level)

    ctx.ensure_object(dict)
    ctx.obj["log_path"] = log_path
    ctx.obj["repos_root"] = (repos_root or Path.cwd()).resolve()
    ctx.obj["config_path"] = config_path
    ctx.obj["jobs"] = jobs
    logger.debug(f"CLI init: repos_root={ctx.obj['repos_root']} config={config_path}")


@cli.command()
@click.argument("branches", nargs=-1, required=True)
@click.pass_context
def plan(ctx: click.Context, branches: Tuple[str, ...]) -> None:
    """
    Show the processing order and subscriptions for updated BRANCHES.

    Example: superproject-sync plan ProjectX:master
    """
    initial = _parse_branches(branches)
    try:
        orchestrator = _build_orchestrator(ctx)
        resolution = orchestrator.resolve(initial)
        if resolution.is_empty:
            console.print("Superproject subscriptions are disabled.", style="bold yellow")
            return
        _display_order(resolution.order, resolution.targets)
        _display_targets(resolution.targets)
        console.print(f"Project order: {' -> '.join(resolution.projects_in_order())}")
    except CircularSubscriptionError as e:
        console.print(f"\n❌ **Circular subscription:** {e}", style="bold red")
        sys.exit(1)
    except SyncError as e:
        console.print(f"\n❌ **Error resolving subscriptions:** {e}", style="bold red")
        logger.debug("Error in plan command", exc_info=True)
        sys.exit(1)


@cli.command()
@click.argument("branches", nargs=-1, required=True)
@click.option("--dry-run", is_flag=True, help="Compose commits but do not move any ref")
@click.pass_context
def update(ctx: click.Context, branches: Tuple[str, ...], dry_run: bool) -> None:
    """
    Update every superproject subscribed to BRANCHES.

    Example: superproject-sync update ProjectX:master ProjectZ:refs/heads/stable
    """
    initial = _parse_branches(branches)
    try:
        orchestrator = _build_orchestrator(ctx)
        if dry_run:
            result = orchestrator.plan(initial)
        else:
            result = orchestrator.apply(initial)
        _display_plan(result)
        if dry_run:
            console.print("\n✅ **Dry Run Complete** - no refs were changed", style="bold green")
        elif result.command_count:
            console.print(
                f"\n✅ **Updated {result.command_count} superproject branches**", style="bold green"
            )
        else:
            console.print("\nNothing to update.", style="bold yellow")
    except CircularSubscriptionError as e:
        console.print(f"\n❌ **Circular subscription:** {e}", style="bold red")
        sys.exit(1)
    except SyncError as e:
        console.print(f"\n❌ **Update failed:** {e}", style="bold red")
        logger.debug("Error in update command", exc_info=True)
        sys.exit(1)


@cli.command()
def version() -> None:
    """Print the current superproject-sync version."""
    console.print(f"superproject-sync {PACKAGE_VERSION}")


def _display_order(order, targets) -> None:
    table = Table(show_header=True, header_style="bold magenta", title="Processing Order")
    table.add_column("Order", justify="center")
    table.add_column("Project", style="cyan")
    table.add_column("Branch", style="green")
    table.add_column("Role", style="blue")
    for i, branch in enumerate(order, 1):
        role = "📁 Superproject" if branch in targets else "📦 Submodule"
        table.add_row(str(i), branch.project, branch.ref, role)
    console.print(table)


def _display_targets(targets) -> None:
    if not targets:
        console.print("\n📦 **No superprojects subscribe to these branches.**", style="bold yellow")
        return
    table = Table(show_header=True, header_style="bold magenta", title="Subscriptions")
    table.add_column("Superproject", style="cyan")
    table.add_column("Path", style="yellow")
    table.add_column("Submodule", style="green")
    for superproject, subs in targets.items():
        for i, sub in enumerate(subs):
            table.add_row(str(superproject) if i == 0 else "", sub.path, str(sub.submodule))
    console.print(table)


def _display_plan(result: UpdatePlan) -> None:
    console.print(f"\n📋 **Pass {result.pass_id}**")
    if not result.composed:
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Superproject", style="cyan")
    table.add_column("Old", style="red")
    table.add_column("New", style="green")
    table.add_column("Updated paths", style="yellow")
    table.add_column("Removed paths", style="dim")
    for composed in result.composed:
        table.add_row(
            str(composed.branch),
            composed.old_tip[:8],
            composed.commit.hash[:8],
            ", ".join(sorted(composed.updated)),
            ", ".join(composed.deleted),
        )
    console.print(table)


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        logger.debug("Top-level cancellation (KeyboardInterrupt)", exc_info=True)
        sys.exit(130)
    except Exception as e:
        console.print(f"\n💥 **Unexpected error:** {e}", style="bold red")
        logger.debug("Unexpected error in main()", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
