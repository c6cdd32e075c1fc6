"""CLI entry point for Arbor."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich import print as rprint
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.tree import Tree

from arbor_core.config import ArborConfig, load_config
from arbor_core.config.loader import DEFAULT_CONFIG_TEMPLATE
from arbor_core.hierarchy import (
    HierarchyCacheMaintainer,
    SnapshotEntry,
    check_consistency,
    rebuild_caches,
)
from arbor_core.interfaces import Node, NodeStore
from arbor_core.plugins import create_store

app = typer.Typer(
    name="arbor",
    help="Tree nodes with cached descendant snapshots, kept consistent on every write.",
)

config_app = typer.Typer(help="Manage Arbor configuration.")
app.add_typer(config_app, name="config")

# Global state
_config: ArborConfig | None = None

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class _JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data)


def _configure_logging(cfg: ArborConfig) -> None:
    handler = logging.StreamHandler()
    if cfg.log_format == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("arbor_core")
    root.handlers = [handler]
    root.setLevel(_LOG_LEVELS[cfg.log_level])


def _get_config() -> ArborConfig:
    if _config is None:
        return load_config()
    return _config


def _get_store() -> NodeStore:
    return create_store(_get_config())


def _get_maintainer(store: NodeStore) -> HierarchyCacheMaintainer:
    return HierarchyCacheMaintainer(store, _get_config().cache)


def _load_node(store: NodeStore, node_id: int) -> Node:
    node = store.get(node_id)
    if node is None:
        rprint(f"[red]Node not found:[/red] {node_id}")
        raise typer.Exit(1)
    return node


def _report_ripple(maintainer: HierarchyCacheMaintainer) -> None:
    report = maintainer.last_report
    if report is None:
        return
    if report.updated:
        rprint(f"[dim]Ancestors updated:[/dim] {', '.join(str(i) for i in report.updated)}")
    if report.failed:
        rprint("[yellow]Some ancestors could not be updated; run 'arbor check'.[/yellow]")


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to arbor.yaml")
    ] = None,
) -> None:
    """Global options."""
    global _config
    _config = load_config(config)
    _configure_logging(_config)


# ---------------------------------------------------------------------------
# Node commands
# ---------------------------------------------------------------------------


@app.command()
def add(
    short_name: Annotated[str, typer.Argument(help="Short name (slug) of the node")],
    parent: Annotated[int, typer.Option("--parent", "-p", help="Parent id, 0 for a root")] = 0,
    display_name: Annotated[str, typer.Option("--display-name", "-d", help="Display name")] = "",
    ordering: Annotated[int, typer.Option("--ordering", help="Sibling sort key")] = 0,
    published: Annotated[bool, typer.Option("--published/--unpublished", help="Publication flag")] = True,
) -> None:
    """Create a node and ripple it into its ancestors."""
    store = _get_store()
    if parent:
        _load_node(store, parent)
    maintainer = _get_maintainer(store)
    node = Node(
        parent=parent,
        short_name=short_name,
        display_name=display_name or short_name,
        ordering=ordering,
        published=published,
    )
    if not maintainer.save(node):
        rprint(f"[red]Failed to save node[/red] {short_name}")
        raise typer.Exit(1)
    rprint(f"[green]Created[/green] node {node.id}")
    _report_ripple(maintainer)


@app.command()
def edit(
    node_id: Annotated[int, typer.Argument(help="Node id")],
    short_name: Annotated[str | None, typer.Option("--short-name", help="New short name")] = None,
    display_name: Annotated[str | None, typer.Option("--display-name", "-d", help="New display name")] = None,
    ordering: Annotated[int | None, typer.Option("--ordering", help="New sibling sort key")] = None,
    published: Annotated[bool | None, typer.Option("--published/--unpublished", help="Publication flag")] = None,
) -> None:
    """Change a node's own fields."""
    store = _get_store()
    node = _load_node(store, node_id)
    if short_name is not None:
        node.short_name = short_name
    if display_name is not None:
        node.display_name = display_name
    if ordering is not None:
        node.ordering = ordering
    if published is not None:
        node.published = published

    maintainer = _get_maintainer(store)
    if not maintainer.save(node):
        rprint(f"[red]Failed to save node[/red] {node_id}")
        raise typer.Exit(1)
    rprint(f"[green]Updated[/green] node {node_id}")
    _report_ripple(maintainer)


@app.command()
def move(
    node_id: Annotated[int, typer.Argument(help="Node id")],
    new_parent: Annotated[int, typer.Argument(help="New parent id, 0 for a root")],
) -> None:
    """Re-parent a node; its old and new ancestors are both updated."""
    store = _get_store()
    node = _load_node(store, node_id)
    maintainer = _get_maintainer(store)

    if new_parent == node_id or maintainer.has_descendant(node, new_parent):
        rprint(f"[red]Refusing to move {node_id} under its own subtree.[/red]")
        raise typer.Exit(1)
    if new_parent:
        _load_node(store, new_parent)

    node.parent = new_parent
    if not maintainer.save(node):
        rprint(f"[red]Failed to save node[/red] {node_id}")
        raise typer.Exit(1)
    rprint(f"[green]Moved[/green] node {node_id} under {new_parent or 'the top level'}")
    _report_ripple(maintainer)


@app.command()
def remove(
    node_id: Annotated[int, typer.Argument(help="Node id")],
) -> None:
    """Delete a node after stripping it from its ancestors' caches."""
    store = _get_store()
    node = _load_node(store, node_id)
    maintainer = _get_maintainer(store)
    if not maintainer.remove(node):
        rprint(f"[red]Failed to remove node[/red] {node_id}")
        raise typer.Exit(1)
    rprint(f"[green]Removed[/green] node {node_id}")
    _report_ripple(maintainer)


@app.command()
def show(
    node_id: Annotated[int, typer.Argument(help="Node id")],
) -> None:
    """Show a node and its cached descendant ids."""
    store = _get_store()
    node = _load_node(store, node_id)
    descendants = sorted(_get_maintainer(store).get_descendant_ids(node))

    panel_text = (
        f"[bold]{node.display_name}[/bold] ({node.short_name})\n\n"
        f"[dim]Parent:[/dim]      {node.parent or '-'}\n"
        f"[dim]Ordering:[/dim]    {node.ordering}\n"
        f"[dim]Published:[/dim]   {'yes' if node.published else 'no'}\n"
        f"[dim]Version:[/dim]     {node.version}\n"
        f"[dim]Descendants:[/dim] {', '.join(str(i) for i in descendants) or 'none'}"
    )
    rprint(Panel(panel_text, title=f"Node {node_id}", border_style="blue"))


def _add_branches(branch: Tree, children: dict[int, SnapshotEntry]) -> None:
    for child_id, entry in sorted(children.items(), key=lambda kv: (kv[1].ordering, kv[0])):
        style = "green" if entry.published else "dim"
        sub = branch.add(f"[{style}]{entry.display_name}[/{style}] [dim]({child_id})[/dim]")
        _add_branches(sub, entry.children)


@app.command()
def tree(
    node_id: Annotated[int | None, typer.Argument(help="Subtree root; all roots when omitted")] = None,
) -> None:
    """Render subtrees from the cached snapshots alone."""
    store = _get_store()
    maintainer = _get_maintainer(store)
    if node_id is not None:
        roots = [_load_node(store, node_id)]
    else:
        roots = [n for n in store.list_nodes() if n.parent == 0]

    if not roots:
        rprint("[yellow]No nodes found.[/yellow]")
        raise typer.Exit(0)

    for root in roots:
        view = Tree(f"[bold]{root.display_name}[/bold] [dim]({root.id})[/dim]")
        _add_branches(view, maintainer.get_descendant_snapshot(root))
        rprint(view)


# ---------------------------------------------------------------------------
# Repair commands
# ---------------------------------------------------------------------------


@app.command()
def check(
    fail_on_stale: Annotated[bool, typer.Option("--fail-on-stale", help="Exit 1 if stale caches found")] = False,
) -> None:
    """Compare every cached record with the tree implied by parent links."""
    report = check_consistency(_get_store(), _get_config().cache)

    if report.stale:
        table = Table(title="Stale Caches")
        table.add_column("Node", style="cyan")
        table.add_column("Missing", style="red")
        table.add_column("Extra", style="yellow")
        table.add_column("Outdated", style="magenta")
        table.add_column("Diverged", justify="center")
        for entry in report.stale:
            table.add_row(
                str(entry.node_id),
                ", ".join(map(str, entry.missing)) or "-",
                ", ".join(map(str, entry.extra)) or "-",
                ", ".join(map(str, entry.outdated)) or "-",
                "yes" if entry.diverged else "-",
            )
        rprint(table)

    if report.cyclic:
        rprint(f"[red]Nodes on a parent cycle:[/red] {', '.join(map(str, report.cyclic))}")

    if report.ok:
        rprint(f"[green]All {report.total_nodes} cache record(s) consistent.[/green]")
    else:
        rprint(f"\n[red]{len(report.stale)} stale cache record(s) found.[/red]")

    if fail_on_stale and not report.ok:
        raise typer.Exit(code=1)


@app.command()
def rebuild() -> None:
    """Recompute every cache record from scratch."""
    report = rebuild_caches(_get_store(), _get_config().cache)
    rprint(f"[green]Rebuilt[/green] {len(report.rebuilt)} node(s).")
    if report.skipped:
        rprint(f"[yellow]Skipped (parent cycle):[/yellow] {', '.join(map(str, report.skipped))}")
    if report.failed:
        rprint(f"[red]Failed:[/red] {', '.join(map(str, report.failed))}")
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Config commands
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    rprint(Syntax(yaml.dump(cfg.model_dump(), default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default arbor.yaml in current directory."""
    target = Path("arbor.yaml")
    if target.exists() and not force:
        rprint("[yellow]arbor.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")


if __name__ == "__main__":
    app()
