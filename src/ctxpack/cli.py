"""Command-line interface for ctxpack."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from ctxpack import __version__
from ctxpack.config import (
    ProjectConfig,
    find_project_root,
    get_ctxpack_dir,
    load_config,
    save_config,
    set_config_value,
)
from ctxpack.context.aggregator import ContextAggregator
from ctxpack.context.models import AggregateOptions, WorkPackage
from ctxpack.context.packager import assemble_work_package
from ctxpack.context.trimmer import trim_to_budget
from ctxpack.exceptions import CtxPackError
from ctxpack.sources.graph import Workspace, load_workspace
from ctxpack.ui.console import Console

console = Console()


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No ctxpack project found. Run 'ctxpack init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_workspace(root: Path, config: ProjectConfig, workspace: str | None) -> Workspace:
    """Load the workspace named on the command line, else the configured one."""
    workspace_path = Path(workspace or config.workspace_file)
    if not workspace_path.is_absolute():
        workspace_path = root / workspace_path
    try:
        return load_workspace(workspace_path)
    except CtxPackError as e:
        console.error(str(e))
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="ctxpack")
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline progress to stderr.")
def main(verbose: bool):
    """ctxpack - related work and code changes for a work item, packed to fit."""
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.INFO,
            format="%(name)s: %(message)s",
            handlers=[RichHandler(show_path=False)],
        )


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--workspace", "-w", default=None, help="Workspace file, relative to the root.")
def init(path: str | None, workspace: str | None):
    """Initialize ctxpack for a directory."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing ctxpack for: {root}")

    config = load_config(root)
    config.name = root.name
    if workspace:
        config.workspace_file = workspace

    save_config(root, config)
    console.success(f"Configuration saved to {get_ctxpack_dir(root)}")

    if not (root / config.workspace_file).exists():
        console.warning(f"Workspace file not found yet: {config.workspace_file}")


@main.command()
@click.argument("item_id")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--workspace", "-w", default=None, help="Workspace file to read.")
@click.option("--depth", "-d", default=None, type=int, help="Relationship depth (default: 2).")
@click.option("--max-related", default=None, type=int, help="Maximum related items.")
@click.option("--max-age", default=None, type=int, help="Recency window in months.")
@click.option("--scope", default=None, help="Repository to search for changes.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
def context(
    item_id: str, path: str | None, workspace: str | None, depth: int | None,
    max_related: int | None, max_age: int | None, scope: str | None, as_json: bool
):
    """Aggregate related items and their changes for ITEM_ID.

    Examples:

        ctxpack context PROJ-123

        ctxpack context PROJ-123 --depth 3 --max-related 10 --json
    """
    root = _get_project_root(path)
    config = load_config(root)
    ws = _load_workspace(root, config, workspace)

    aggregator = ContextAggregator(ws.resolver, ws.change_lookup, config=config.context)
    options = AggregateOptions(
        depth=depth if depth is not None else config.context.default_depth,
        include_types=list(config.context.include_types),
        repo_scope=scope,
        max_age_months=max_age,
        max_related=max_related,
    )
    result = asyncio.run(aggregator.aggregate_context(item_id, options))

    if as_json:
        click.echo(result.model_dump_json(indent=2, exclude_none=True))
        return

    if result.is_empty and ws.get_item(item_id) is None:
        console.warning(f"Item not found in workspace: {item_id}")
    console.show_result(result)


@main.command()
@click.argument("item_id")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--workspace", "-w", default=None, help="Workspace file to read.")
@click.option("--budget", "-b", default=None, type=int, help="Size budget in units (0 disables trimming).")
@click.option("--depth", "-d", default=None, type=int, help="Relationship depth (default: 2).")
@click.option("--max-related", default=None, type=int, help="Maximum related items.")
@click.option("--json", "as_json", is_flag=True, help="Print the package as JSON.")
def package(
    item_id: str, path: str | None, workspace: str | None, budget: int | None,
    depth: int | None, max_related: int | None, as_json: bool
):
    """Build the size-bounded work package for ITEM_ID."""
    root = _get_project_root(path)
    config = load_config(root)
    ws = _load_workspace(root, config, workspace)

    primary = ws.get_item(item_id)
    if primary is None:
        console.error(f"Item not found in workspace: {item_id}")
        sys.exit(1)

    aggregator = ContextAggregator(ws.resolver, ws.change_lookup, config=config.context)
    result = asyncio.run(
        assemble_work_package(
            aggregator,
            primary,
            subtasks=ws.subtasks_of(item_id),
            depth=depth if depth is not None else config.context.default_depth,
            max_related=max_related,
            max_units=budget,
            trim_config=config.trim,
        )
    )

    if as_json:
        click.echo(result.model_dump_json(indent=2, exclude_none=True))
        return
    console.show_package(result)


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--budget", "-b", required=True, type=int, help="Size budget in units.")
@click.option("--output", "-o", default=None, help="Write the trimmed package here instead of stdout.")
def trim(file: str, budget: int, output: str | None):
    """Trim a saved work package FILE to fit a size budget."""
    try:
        work_package = WorkPackage.model_validate_json(Path(file).read_text())
    except ValidationError as e:
        console.error(f"Not a valid work package: {e.error_count()} errors")
        sys.exit(1)

    trimmed = trim_to_budget(work_package, budget)
    payload = trimmed.model_dump_json(indent=2, exclude_none=True)

    if output is None:
        click.echo(payload)
        return

    Path(output).write_text(payload)
    if trimmed is work_package:
        console.success(f"Already within budget, written to {output}")
        return
    console.show_trim_report(trimmed.trim)
    if trimmed.trim_warning:
        console.warning(trimmed.trim_warning)
    console.success(f"Trimmed package written to {output}")


@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage ctxpack configuration."""
    root = _get_project_root(path)
    config = load_config(root)

    if action == "show":
        console.json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: ctxpack config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: ctxpack config set <key> <value>")
            sys.exit(1)
        # Numbers, booleans and lists arrive as JSON; anything else is a string
        try:
            parsed_value = json.loads(value)
        except json.JSONDecodeError:
            parsed_value = value
        try:
            config = set_config_value(config, key, parsed_value)
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ValidationError as e:
            console.error(f"Invalid value for {key}: {e.errors()[0]['msg']}")
            sys.exit(1)
        save_config(root, config)
        console.success(f"Set {key} = {parsed_value}")


if __name__ == "__main__":
    main()
