from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

BOXSYNC_HOME = Path(os.environ.get("BOXSYNC_HOME") or (Path.home() / ".boxsync")).expanduser()


class BoxAuthConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    # A developer token skips the OAuth flow entirely (valid for 60 minutes).
    developer_token: str = ""
    token_file: str = str(BOXSYNC_HOME / "tokens.json")
    redirect_uri: str = "http://localhost:8765/oauth/callback"
    timeout_sec: int = 30


class SyncConfig(BaseModel):
    exclude_dirs: list[str] = Field(default_factory=lambda: [
        ".git",
        "__pycache__",
        ".Rproj.user",
    ])
    exclude_hidden_dirs: bool = True
    exclude_hidden_files: bool = True
    follow_symlinks: bool = False
    # Differing files whose mtimes are this close are reported as conflicts.
    mtime_tolerance_sec: float = Field(default=2.0, ge=0)
    max_workers: int = Field(default=1, ge=1, le=16)


class HttpConfig(BaseModel):
    # Only HTTP 429 responses are retried.
    max_retries: int = Field(default=3, ge=0, le=10)
    page_size: int = Field(default=1000, ge=1, le=1000)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(BOXSYNC_HOME / "boxsync.log")


class AppConfig(BaseModel):
    auth: BoxAuthConfig = Field(default_factory=BoxAuthConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


DEFAULT_CONFIG_PATH = BOXSYNC_HOME / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = BOXSYNC_HOME / "config.yaml.example"
RUN_HISTORY_PATH = BOXSYNC_HOME / "run_history.jsonl"
AUTH_STATE_PATH = BOXSYNC_HOME / "auth_state.txt"


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    if cfg.auth.token_file:
        Path(cfg.auth.token_file).expanduser().parent.mkdir(parents=True, exist_ok=True)


def _dump(cfg: AppConfig) -> str:
    import yaml

    return yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                cfg = AppConfig.model_validate(yaml.safe_load(template_text) or {})
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(_dump(cfg), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(_dump(cfg), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_dump(cfg), encoding="utf-8")
