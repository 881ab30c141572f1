from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import json
from pathlib import Path
from typing import Annotated, Any, Iterator

import typer
from rich.console import Console
from rich.table import Table

from vilm.config import AppConfig, default_config_path, load_config, write_default_config
from vilm.errors import VilmError
from vilm.models import ReviewStatus, action_tag, actor_tag
from vilm.service import LibraryService
from vilm.util.logging import setup_logging, use_color

app = typer.Typer(help="vilm: index a video folder into a catalog with thumbnails and contact sheets")
tag_app = typer.Typer(help="Edit asset tags")
app.add_typer(tag_app, name="tag")


@dataclass(slots=True)
class AppState:
    config: AppConfig
    console: Console
    config_path: Path


def _state(ctx: typer.Context) -> AppState:
    st = ctx.obj
    if not isinstance(st, AppState):
        raise RuntimeError("app state not initialized")
    return st


@contextmanager
def _library(st: AppState, root: Path) -> Iterator[LibraryService]:
    svc: LibraryService | None = None
    try:
        svc = LibraryService(root, st.config)
        yield svc
    except VilmError as exc:
        st.console.print(f"[red]error:[/red] {exc}")
        raise typer.Exit(1) from exc
    finally:
        if svc is not None:
            svc.close()


def _emit_obj(console: Console, obj: dict, json_out: bool) -> None:
    if json_out:
        typer.echo(json.dumps(obj, indent=2))
        return
    for k, v in obj.items():
        console.print(f"[bold]{k}[/bold]: {v}")


def _emit_assets(console: Console, rows: list[dict[str, Any]], json_out: bool) -> None:
    if json_out:
        typer.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        console.print("[dim]no assets[/dim]")
        return
    table = Table(title="assets")
    table.add_column("id")
    table.add_column("relative_path")
    table.add_column("status")
    table.add_column("actors")
    table.add_column("actions")
    table.add_column("artifacts")
    for row in rows:
        marks = ("T" if row.get("thumbnail") else "-") + ("S" if row.get("contact_sheet") else "-")
        status = str(row["status"])
        table.add_row(
            str(row["id"]),
            str(row["relative_path"]),
            f"[green]{status}[/green]" if status == ReviewStatus.REVIEWED.value else status,
            ", ".join(row.get("actors") or []),
            ", ".join(row.get("actions") or []),
            marks,
        )
    console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[Path | None, typer.Option("--config", help="Config YAML path")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging")] = False,
) -> None:
    setup_logging(verbose)
    cfg_path = config.expanduser() if config else default_config_path()
    color_on = use_color()
    ctx.obj = AppState(
        config=load_config(cfg_path),
        console=Console(color_system="auto" if color_on else None, force_terminal=color_on),
        config_path=cfg_path,
    )


@app.command("init-config")
def init_config(
    ctx: typer.Context,
    path: Annotated[Path | None, typer.Option("--path", help="Write config to this path")] = None,
) -> None:
    st = _state(ctx)
    written = write_default_config(path.expanduser() if path else st.config_path)
    st.console.print(f"[green]config:[/green] {written}")


@app.command("scan")
def scan_cmd(
    ctx: typer.Context,
    root: Annotated[Path, typer.Argument(help="Library root folder")],
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    with _library(st, root) as svc:
        _emit_obj(st.console, svc.scan(), json_out)


@app.command("ls")
def ls_cmd(
    ctx: typer.Context,
    root: Annotated[Path, typer.Argument(help="Library root folder")],
    status: Annotated[ReviewStatus | None, typer.Option("--status", help="Only assets with this review status")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    with _library(st, root) as svc:
        _emit_assets(st.console, svc.list_assets(status), json_out)


@app.command("show")
def show_cmd(
    ctx: typer.Context,
    root: Annotated[Path, typer.Argument(help="Library root folder")],
    asset_id: Annotated[str, typer.Argument(help="Asset id")],
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    with _library(st, root) as svc:
        _emit_obj(st.console, svc.get(asset_id), json_out)


@app.command("review")
def review_cmd(
    ctx: typer.Context,
    root: Annotated[Path, typer.Argument(help="Library root folder")],
    asset_id: Annotated[str, typer.Argument(help="Asset id")],
    undo: Annotated[bool, typer.Option("--undo", help="Mark as unreviewed again")] = False,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    status = ReviewStatus.UNREVIEWED if undo else ReviewStatus.REVIEWED
    with _library(st, root) as svc:
        _emit_obj(st.console, svc.set_status(asset_id, status), json_out)


def _tag_value(value: str, actor: bool, action: bool) -> str:
    if actor and action:
        raise typer.BadParameter("--actor and --action are mutually exclusive")
    if actor:
        return actor_tag(value)
    if action:
        return action_tag(value)
    return value


@tag_app.command("add")
def tag_add_cmd(
    ctx: typer.Context,
    root: Annotated[Path, typer.Argument(help="Library root folder")],
    asset_id: Annotated[str, typer.Argument(help="Asset id")],
    value: Annotated[str, typer.Argument(help="Tag, e.g. actor:Jane or tag:jump")],
    actor: Annotated[bool, typer.Option("--actor", help="Prefix the value with actor:")] = False,
    action: Annotated[bool, typer.Option("--action", help="Prefix the value with tag:")] = False,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    tag = _tag_value(value, actor, action)
    with _library(st, root) as svc:
        _emit_obj(st.console, svc.add_tag(asset_id, tag), json_out)


@tag_app.command("rm")
def tag_rm_cmd(
    ctx: typer.Context,
    root: Annotated[Path, typer.Argument(help="Library root folder")],
    asset_id: Annotated[str, typer.Argument(help="Asset id")],
    value: Annotated[str, typer.Argument(help="Tag to remove")],
    actor: Annotated[bool, typer.Option("--actor", help="Prefix the value with actor:")] = False,
    action: Annotated[bool, typer.Option("--action", help="Prefix the value with tag:")] = False,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    tag = _tag_value(value, actor, action)
    with _library(st, root) as svc:
        _emit_obj(st.console, svc.remove_tag(asset_id, tag), json_out)


@app.command("artifacts")
def artifacts_cmd(
    ctx: typer.Context,
    root: Annotated[Path, typer.Argument(help="Library root folder")],
    overwrite: Annotated[bool, typer.Option("--overwrite", help="Regenerate existing thumbnails")] = False,
    jobs: Annotated[int | None, typer.Option("--jobs", "-j", help="Assets processed concurrently")] = None,
    timeout: Annotated[float | None, typer.Option("--timeout", help="Per-asset time limit in seconds")] = None,
    thumbnails: Annotated[bool, typer.Option("--thumbnails/--no-thumbnails")] = True,
    sheets: Annotated[bool, typer.Option("--sheets/--no-sheets")] = True,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    with _library(st, root) as svc:
        result = svc.generate_artifacts(
            overwrite=overwrite,
            jobs=jobs,
            timeout=timeout,
            thumbnails=thumbnails,
            contact_sheets=sheets,
        )
    _emit_obj(st.console, result, json_out)
    if result["failed"]:
        raise typer.Exit(1)


@app.command("status")
def status_cmd(
    ctx: typer.Context,
    root: Annotated[Path, typer.Argument(help="Library root folder")],
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    with _library(st, root) as svc:
        _emit_obj(st.console, svc.status(), json_out)


if __name__ == "__main__":
    app()
