from __future__ import annotations

import json
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from boxsync.core.config import (
    AUTH_STATE_PATH,
    DEFAULT_CONFIG_PATH,
    RUN_HISTORY_PATH,
    AppConfig,
    load_config,
    save_config,
)
from boxsync.core.errors import BoxSyncError
from boxsync.core.logging_setup import make_log_func, setup_logging
from boxsync.providers.box import BoxClient, SyncEngine
from boxsync.providers.box.models import FETCH, PUSH, Skip
from boxsync.providers.box.report import SyncResult

app = typer.Typer(add_completion=False)
console = Console()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _append_run_history(summary: dict) -> None:
    RUN_HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
    with RUN_HISTORY_PATH.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def _build_client(cfg: AppConfig) -> BoxClient:
    return BoxClient(
        client_id=cfg.auth.client_id,
        client_secret=cfg.auth.client_secret,
        token_file=cfg.auth.token_file,
        developer_token=cfg.auth.developer_token,
        timeout=int(cfg.auth.timeout_sec),
        max_retries=int(cfg.http.max_retries),
        page_size=int(cfg.http.page_size),
    )


def _build_box_client() -> tuple[AppConfig, BoxClient]:
    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file)
    return cfg, _build_client(cfg)


def _build_sync_engine() -> tuple[AppConfig, SyncEngine]:
    cfg, client = _build_box_client()
    return cfg, SyncEngine(client, cfg.model_dump(), make_log_func())


def _render_failures(result: SyncResult) -> None:
    failures = result.failures()
    if not failures:
        return
    table = Table(title=f"{result.direction} failures")
    table.add_column("Path")
    table.add_column("Reason")
    for path, reason in failures:
        table.add_row(path, reason)
    console.print(table)


def _run_sync(direction: str, local_dir: Path, folder_id: str, overwrite: bool, delete: bool) -> None:
    try:
        _cfg, engine = _build_sync_engine()
        if direction == PUSH:
            result = engine.push(str(local_dir), folder_id, overwrite=overwrite, delete=delete)
        else:
            result = engine.fetch(folder_id, str(local_dir), overwrite=overwrite, delete=delete)
    except BoxSyncError as e:
        _print_json({"ok": False, "direction": direction, "error": str(e)})
        raise typer.Exit(2)

    summary = {
        "checked_at": _now_iso(),
        "local_dir": str(local_dir),
        "remote_folder_id": folder_id,
        "overwrite": overwrite,
        "delete": delete,
        **result.summary(),
    }
    _append_run_history(summary)
    _print_json(summary)
    _render_failures(result)
    if not result.ok:
        raise typer.Exit(2)


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml (secrets masked)."""
    cfg = load_config(path)
    data = cfg.model_dump()
    for key in ("client_secret", "developer_token"):
        if data["auth"].get(key):
            data["auth"][key] = "***"
    _print_json(data)


@app.command("config-set-auth")
def config_set_auth(
    client_id: str = typer.Option(..., "--client-id", help="Box app client_id"),
    client_secret: str = typer.Option(..., "--client-secret", help="Box app client_secret"),
    token_file: str = typer.Option("", "--token-file", help="Path for storing OAuth tokens"),
    redirect_uri: str = typer.Option("", "--redirect-uri", help="OAuth redirect URI registered in the Box app"),
):
    """Set Box OAuth2 app credentials."""
    cfg = load_config()
    cfg.auth.client_id = client_id
    cfg.auth.client_secret = client_secret
    if token_file:
        cfg.auth.token_file = token_file
    if redirect_uri:
        cfg.auth.redirect_uri = redirect_uri
    save_config(cfg)
    _print_json(
        {
            "ok": True,
            "client_id_set": bool(cfg.auth.client_id),
            "client_secret_set": bool(cfg.auth.client_secret),
            "token_file": cfg.auth.token_file,
            "redirect_uri": cfg.auth.redirect_uri,
        }
    )


@app.command()
def status():
    """Show configuration and authentication summary."""
    cfg = load_config()
    token_path = Path(cfg.auth.token_file).expanduser() if cfg.auth.token_file else None
    token_exists = bool(token_path and token_path.exists())

    table = Table(title="boxsync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("client_id_set", "yes" if cfg.auth.client_id else "no")
    table.add_row("developer_token_set", "yes" if cfg.auth.developer_token else "no")
    table.add_row("token_file", str(token_path) if token_path else "(unset)")
    table.add_row("token_file_exists", "yes" if token_exists else "no")
    table.add_row("exclude_dirs", ", ".join(cfg.sync.exclude_dirs))
    table.add_row("mtime_tolerance_sec", str(cfg.sync.mtime_tolerance_sec))
    table.add_row("max_workers", str(cfg.sync.max_workers))
    table.add_row("log", cfg.logging.file)
    console.print(table)


@app.command("auth-url")
def auth_url(
    redirect_uri: str = typer.Option("", "--redirect-uri", help="Overrides auth.redirect_uri."),
):
    """Generate the Box OAuth2 authorization URL."""
    try:
        cfg, client = _build_box_client()
        redirect = redirect_uri or cfg.auth.redirect_uri
        state = secrets.token_hex(16)
        url = client.create_oauth_authorize_url(redirect_uri=redirect, state=state)
        AUTH_STATE_PATH.parent.mkdir(parents=True, exist_ok=True)
        AUTH_STATE_PATH.write_text(state, encoding="utf-8")
        _print_json(
            {
                "ok": True,
                "auth_url": url,
                "state": state,
                "state_path": str(AUTH_STATE_PATH),
                "redirect_uri": redirect,
                "token_file": cfg.auth.token_file,
            }
        )
    except Exception as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)


def _token_report(cfg: AppConfig, token_data: dict) -> dict:
    return {
        "ok": True,
        "saved_to": cfg.auth.token_file,
        "token_type": token_data.get("token_type"),
        "expires_in": token_data.get("expires_in"),
        "created_at": token_data.get("created_at"),
        "has_access_token": bool(token_data.get("access_token")),
        "has_refresh_token": bool(token_data.get("refresh_token")),
    }


@app.command("auth-exchange")
def auth_exchange(
    code: str = typer.Option(..., "--code", help="OAuth code returned to the redirect URI."),
):
    """Exchange an OAuth code for tokens and save them to token_file."""
    try:
        cfg, client = _build_box_client()
        _print_json(_token_report(cfg, client.exchange_code_for_token(code)))
    except Exception as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)


@app.command("auth-refresh")
def auth_refresh(
    force: bool = typer.Option(
        True,
        "--force/--no-force",
        help="Refresh even if the current access token still looks valid.",
    ),
):
    """Refresh the access token using the stored refresh_token."""
    try:
        cfg, client = _build_box_client()
        _print_json(_token_report(cfg, client.refresh_access_token(force=force)))
    except Exception as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)


@app.command("diff")
def diff_cmd(
    local_dir: Path = typer.Argument(..., help="Local directory."),
    folder_id: str = typer.Argument(..., help="Box folder id."),
    direction: str = typer.Option(PUSH, "--direction", help="push or fetch."),
    overwrite: bool = typer.Option(False, "--overwrite"),
    delete: bool = typer.Option(False, "--delete"),
):
    """Show classifications and the planned actions without transferring anything."""
    if direction not in (PUSH, FETCH):
        _print_json({"ok": False, "error": f"invalid_direction: {direction}"})
        raise typer.Exit(2)
    try:
        _cfg, engine = _build_sync_engine()
        entries, plan = engine.preview(direction, str(local_dir), folder_id, overwrite=overwrite, delete=delete)
    except BoxSyncError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)

    classes = {e.relative_path: e.classification.value for e in entries}
    table = Table(title=f"{direction} plan")
    table.add_column("Path")
    table.add_column("Classification")
    table.add_column("Action")
    for action in plan:
        label = f"skip ({action.reason})" if isinstance(action, Skip) else type(action).__name__.lower()
        table.add_row(action.relative_path, classes.get(action.relative_path, ""), label)
    console.print(table)


@app.command()
def push(
    local_dir: Path = typer.Argument(..., help="Local directory to upload from."),
    folder_id: str = typer.Argument(..., help="Target Box folder id."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Upload new versions of files that differ."),
    delete: bool = typer.Option(False, "--delete", help="Delete Box items absent locally."),
):
    """Push a local directory to a Box folder."""
    _run_sync(PUSH, local_dir, folder_id, overwrite, delete)


@app.command()
def fetch(
    folder_id: str = typer.Argument(..., help="Box folder id to download from."),
    local_dir: Path = typer.Argument(..., help="Local target directory."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace local files that differ."),
    delete: bool = typer.Option(False, "--delete", help="Delete local files absent on Box."),
):
    """Fetch a Box folder into a local directory."""
    _run_sync(FETCH, local_dir, folder_id, overwrite, delete)


@app.command()
def search(
    query: str = typer.Argument(...),
    folder_id: str = typer.Option("", "--folder-id", help="Restrict to this ancestor folder."),
    ext: list[str] = typer.Option([], "--ext", help="File extension filter, repeatable."),
    limit: int = typer.Option(50, "--limit", min=1, max=1000),
):
    """Search Box files."""
    try:
        _cfg, client = _build_box_client()
        items = client.search(query, ancestor_folder_id=folder_id or None, file_extensions=ext or None, limit=limit)
    except BoxSyncError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)

    table = Table(title=f"search: {query}")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Size")
    table.add_column("Modified")
    for item in items:
        table.add_row(str(item.get("id")), str(item.get("name")), str(item.get("size", "")), str(item.get("modified_at", "")))
    console.print(table)


@app.command()
def download(
    file_id: str = typer.Argument(...),
    dest: Path = typer.Argument(..., help="Destination file path."),
    version_id: str = typer.Option("", "--version-id", help="Download this version instead of the current one."),
    version_no: int = typer.Option(0, "--version-no", help="1-based version number, oldest first."),
):
    """Download one Box file."""
    try:
        _cfg, client = _build_box_client()
        info = client.download(file_id, str(dest), version_id=version_id or None, version_no=version_no or None)
    except BoxSyncError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)
    _print_json({"ok": True, "file_id": file_id, "dest": str(dest), **info})


@app.command()
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False),
    folder_id: str = typer.Argument("0"),
):
    """Upload one file; an existing file of the same name gets a new version."""
    try:
        _cfg, client = _build_box_client()
        item = client.upload(str(path), folder_id)
    except BoxSyncError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)
    _print_json({"ok": True, "file_id": item.get("id"), "name": item.get("name"), "sha1": item.get("sha1")})


def main():
    app()


if __name__ == "__main__":
    main()
