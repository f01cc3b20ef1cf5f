"""Command-line interface for promptfit."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import click

from promptfit import __version__
from promptfit.config import (
    EvictionGranularity,
    ProjectConfig,
    find_project_root,
    get_config_value,
    load_config,
    save_config,
    set_config_value,
)
from promptfit.exceptions import ConfigError, PromptFitError
from promptfit.ui.console import Console

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
            "No promptfit project found. Run 'promptfit init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_config_or_default(path: str | None) -> ProjectConfig:
    """Project config if one can be found, defaults otherwise."""
    root = Path(path).resolve() if path else find_project_root()
    if root is None:
        return ProjectConfig()
    try:
        return load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="promptfit")
def main():
    """promptfit - fit prompt trees to a token budget."""
    pass


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
def init(path: str | None):
    """Create .promptfit/config.json with default settings."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing promptfit for: {root}")
    try:
        config = load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)
    config.name = root.name
    save_config(root, config)
    console.success("Configuration saved to .promptfit/")


# =========================================================================
# Rendering
# =========================================================================

@main.command()
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--budget", "-b", required=True, type=int, help="Token budget.")
@click.option("--path", "-p", default=None, help="Path to the project root (for config).")
@click.option(
    "--granularity", "-g",
    type=click.Choice([g.value for g in EvictionGranularity]),
    default=None,
    help="Evict single units or whole uniform-priority groups.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Show engine debug logs.")
def render(
    tree_file: str, budget: int, path: str | None, granularity: str | None,
    as_json: bool, verbose: bool,
):
    """Render a JSON tree declaration into messages that fit BUDGET.

    Sizes are estimated from character counts.

    Examples:

        promptfit render prompt.json --budget 4000

        promptfit render prompt.json -b 1000 --granularity group --json
    """
    from promptfit.measure.cache import SizeCache
    from promptfit.measure.measurer import CharRatioMeasurer
    from promptfit.nodes.loader import load_tree
    from promptfit.render.engine import PromptRenderer

    config = _load_config_or_default(path)
    if granularity:
        config.render.eviction_granularity = EvictionGranularity(granularity)
    if verbose:
        console.enable_logging()

    try:
        tree = load_tree(Path(tree_file))
        renderer = PromptRenderer(
            CharRatioMeasurer(config.measure.chars_per_token),
            SizeCache(config.cache.capacity),
            config.render,
        )
        result = asyncio.run(renderer.render(tree, budget))
    except PromptFitError as e:
        console.error(str(e))
        sys.exit(1)

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        console.show_result(result)

    if result.budget_unsatisfiable:
        sys.exit(2)


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage promptfit configuration."""
    root = _get_project_root(path)
    try:
        config = load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(mode="json"), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: promptfit config get <key>")
            sys.exit(1)
        try:
            data = get_config_value(config, key)
        except KeyError:
            console.error(f"Unknown key: {key}")
            sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: promptfit config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ConfigError as e:
            console.error(str(e))
            sys.exit(1)


if __name__ == "__main__":
    main()
