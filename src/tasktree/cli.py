"""
tasktree command line: validate, inspect and dry-run task definitions.

    tasktree validate tasks/flanker.lua --watch
    tasktree show tasks/flanker.lua --block main
    tasktree dump tasks/flanker.lua --expanded
    tasktree run tasks/flanker.lua --block main --keys "1.2:keypress:f,2.5:keypress:j"
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

from .assets import AssetResolver
from .config import get_config
from .core.events import InputEvent
from .errors import TaskTreeError
from .lua import (
    DefinitionWatcher,
    NodeDefinition,
    TaskDefinition,
    TemplateExpander,
    TreeLoader,
    TreeValidator,
    dump_block,
    dump_task,
)
from .runner import BlockRunner, open_sink
from .sinks import MemorySink

logger = logging.getLogger(__name__)

APP_HELP = """
tasktree: action-tree engine for timed experiment tasks.

A task is a Lua file returning `task { ... }` (or a single `block { ... }`).
Each block is a tree of actions (stimuli, timers, input handlers, loggers)
run tick by tick.
"""

app = typer.Typer(name="tasktree", help=APP_HELP, no_args_is_help=True)
console = Console()


def _configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else get_config().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load(path: Path) -> TaskDefinition:
    loader = TreeLoader(sandbox_timeout=get_config().lua_timeout_seconds)
    try:
        return loader.load_task(path)
    except TaskTreeError as e:
        console.print(f"[red]Failed to load {path}:[/red] {e}")
        raise typer.Exit(code=1)


def _blocks(task: TaskDefinition, block: Optional[str]):
    if block is None:
        return list(task.blocks)
    try:
        return [task.block(block)]
    except TaskTreeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


def parse_inputs(spec: str) -> List[InputEvent]:
    """Parse "t:group:key,..." into input events.

    A key named "click" produces a pointer click at (0, 0).

    Raises:
        typer.BadParameter: On malformed entries.
    """
    events: List[InputEvent] = []
    for entry in filter(None, (part.strip() for part in spec.split(","))):
        parts = entry.split(":")
        if len(parts) != 3:
            raise typer.BadParameter(f"Expected 't:group:key', got {entry!r}")
        try:
            timestamp = float(parts[0])
        except ValueError:
            raise typer.BadParameter(f"Invalid time in {entry!r}") from None
        group, key = parts[1], parts[2]
        if key == "click":
            events.append(InputEvent.click(timestamp, 0.0, 0.0, group=group))
        else:
            events.append(InputEvent.key(timestamp, key, group=group))
    return events


def _validate_file(path: Path, block: Optional[str]) -> bool:
    """Print a validation report for every selected block; True if all pass."""
    task = _load(path)
    ok = True
    for definition in _blocks(task, block):
        try:
            expanded = TemplateExpander(task.templates).expand(definition)
        except TaskTreeError as e:
            console.print(f"[red]✗ {definition.name}[/red]: {e}")
            ok = False
            continue
        errors = TreeValidator().validate(expanded, task.config)
        if errors:
            ok = False
            console.print(f"[red]✗ {definition.name}[/red]: {len(errors)} error(s)")
            for error in errors:
                console.print(f"  {error}")
        else:
            count = sum(1 for _ in expanded.tree.walk())
            console.print(f"[green]✓ {definition.name}[/green] ({count} nodes)")
    return ok


@app.command()
def validate(
    path: Path = typer.Argument(..., help="Task or block definition (.lua)"),
    block: Optional[str] = typer.Option(None, "--block", "-b", help="Only validate this block"),
    watch: bool = typer.Option(False, "--watch", "-w", help="Re-validate whenever the file changes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Check a definition file: templates, node kinds, fields and durations.

    Exits with code 1 if any block has errors. With --watch, keeps running
    and re-validates on every save until interrupted.
    """
    _configure_logging(verbose)
    if not watch:
        if not _validate_file(path, block):
            raise typer.Exit(code=1)
        return

    def revalidate(changed: Path) -> None:
        console.rule(f"[dim]{changed.name}[/dim]")
        try:
            _validate_file(changed, block)
        except typer.Exit:
            pass

    revalidate(path)
    watcher = DefinitionWatcher(path.resolve().parent, revalidate, only=path)
    watcher.start_watching()
    console.print(f"[dim]Watching {path} (Ctrl+C to stop)[/dim]")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop_watching()


@app.command()
def show(
    path: Path = typer.Argument(..., help="Task or block definition (.lua)"),
    block: Optional[str] = typer.Option(None, "--block", "-b", help="Only show this block"),
    as_tree: bool = typer.Option(False, "--tree", help="Render as a tree instead of a table"),
):
    """
    Print the blocks of a task with their expanded action trees.
    """
    task = _load(path)
    console.print(f"[bold blue]{task.name}[/bold blue] {task.version}".rstrip())
    for definition in _blocks(task, block):
        try:
            expanded = TemplateExpander(task.templates).expand(definition)
        except TaskTreeError as e:
            console.print(f"[red]{definition.name}: {e}[/red]")
            raise typer.Exit(code=1)

        if as_tree:
            root = Tree(f"[bold]{expanded.name}[/bold]")
            _add_tree(root, expanded.tree)
            console.print(root)
            continue

        table = Table(title=f"Block: {expanded.name}", show_header=True)
        table.add_column("Node", style="cyan")
        table.add_column("Kind")
        table.add_column("Config", style="dim")
        table.add_column("Line", justify="right")
        for node, depth in _walk_with_depth(expanded.tree):
            config = {key: value for key, value in node.config.items() if key != "branches"}
            table.add_row(
                "  " * depth + node.id,
                node.type,
                json.dumps(config, default=str) if config else "",
                str(node.source_line or ""),
            )
        console.print(table)


def _walk_with_depth(node: NodeDefinition, depth: int = 0):
    yield node, depth
    for child in node.children:
        if isinstance(child, NodeDefinition):
            yield from _walk_with_depth(child, depth + 1)


def _add_tree(parent: Tree, node: NodeDefinition) -> None:
    branch = parent.add(f"[cyan]{node.type}[/cyan] {node.id}")
    for child in node.children:
        if isinstance(child, NodeDefinition):
            _add_tree(branch, child)


@app.command()
def dump(
    path: Path = typer.Argument(..., help="Task or block definition (.lua)"),
    expanded: bool = typer.Option(False, "--expanded", "-e", help="Expand templates first"),
):
    """
    Print the definition back as normalized Lua (explicit ids, named fields).
    """
    task = _load(path)
    if expanded:
        try:
            blocks = [TemplateExpander(task.templates).expand(b) for b in task.blocks]
        except TaskTreeError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1)
        for b in blocks:
            b.templates = {}
        task = TaskDefinition(
            name=task.name,
            blocks=blocks,
            version=task.version,
            description=task.description,
            config=task.config,
        )
    text = dump_block(task.blocks[0]) if len(task.blocks) == 1 and not task.config else dump_task(task)
    typer.echo(text, nl=False)


@app.command()
def run(
    path: Path = typer.Argument(..., help="Task or block definition (.lua)"),
    block: Optional[str] = typer.Option(None, "--block", "-b", help="Block to run (default: first)"),
    frame_dt: Optional[float] = typer.Option(None, "--frame-dt", help="Tick interval in seconds"),
    max_time: Optional[float] = typer.Option(None, "--max-time", help="Abort after this many seconds"),
    keys: str = typer.Option("", "--keys", "-k", help='Scripted input: "t:group:key,..."'),
    assets: Optional[Path] = typer.Option(None, "--assets", help="Asset directory (default: next to the file)"),
    write_log: bool = typer.Option(False, "--log", help="Write a JSONL log to TASKTREE_LOG_DIR"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Run one block headless with simulated time and scripted input.
    """
    _configure_logging(verbose)
    config = get_config()
    task = _load(path)
    definition = _blocks(task, block or task.blocks[0].name)[0]
    inputs = parse_inputs(keys)

    sink = open_sink(config, definition, task.name) if write_log else MemorySink()
    try:
        runner = BlockRunner(
            definition,
            sink=sink,
            assets=AssetResolver(assets or path.parent),
            config=config,
            templates=task.templates,
            parent_config=task.config,
        )
    except TaskTreeError as e:
        console.print(f"[red]Cannot run block '{definition.name}':[/red] {e}")
        raise typer.Exit(code=1)

    report = runner.run_simulated(frame_dt=frame_dt, inputs=inputs, max_time=max_time)

    if as_json:
        typer.echo(json.dumps(report.to_dict(), default=str, indent=2))
    else:
        table = Table(title=f"Run: {definition.name}", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        colour = "green" if report.ok else "red"
        table.add_row("Status", f"[{colour}]{report.status.value}[/{colour}]")
        table.add_row("End time", f"{report.end_time:.3f}s")
        table.add_row("Ticks", str(report.ticks))
        for line, value in report.snapshot.items():
            table.add_row(f"Line {line}", repr(value))
        if report.error:
            table.add_row("Error", str(report.error))
        console.print(table)

    if report.error:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
