"""Read a Box file into a Python object, or write one back.

Parsers and serializers are chosen from explicit format tables. The format
comes from an explicit ``format=`` argument, then the file extension, then
the declared content type. When none of them resolves, ``UnknownFormatError``
is raised.
"""

from __future__ import annotations

import csv
import inspect
import json
import logging
import mimetypes
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from boxsync.core.errors import UnknownFormatError

logger = logging.getLogger(__name__)

FORMAT_ALIASES = {
    "yml": "yaml",
    "text": "txt",
    "md": "txt",
    "tab": "tsv",
}

MIME_FORMATS = {
    "text/csv": "csv",
    "text/tab-separated-values": "tsv",
    "application/json": "json",
    "application/yaml": "yaml",
    "application/x-yaml": "yaml",
    "text/yaml": "yaml",
    "text/plain": "txt",
    "text/markdown": "txt",
}


def _read_delimited(path: Path, delimiter: str, encoding: str = "utf-8", **kwargs) -> list[dict[str, str]]:
    with path.open("r", encoding=encoding, newline="") as f:
        return list(csv.DictReader(f, delimiter=delimiter, **kwargs))


def read_csv(path: Path, **kwargs) -> list[dict[str, str]]:
    return _read_delimited(path, ",", **kwargs)


def read_tsv(path: Path, **kwargs) -> list[dict[str, str]]:
    return _read_delimited(path, "\t", **kwargs)


def read_json(path: Path, encoding: str = "utf-8", **kwargs) -> Any:
    return json.loads(path.read_text(encoding=encoding), **kwargs)


def read_yaml(path: Path, encoding: str = "utf-8") -> Any:
    return yaml.safe_load(path.read_text(encoding=encoding))


def read_text(path: Path, encoding: str = "utf-8") -> str:
    return path.read_text(encoding=encoding)


def _write_delimited(obj, path: Path, delimiter: str, encoding: str = "utf-8"):
    rows = list(obj)
    with path.open("w", encoding=encoding, newline="") as f:
        if rows and isinstance(rows[0], dict):
            fieldnames = list(rows[0].keys())
            writer = csv.DictWriter(f, fieldnames=fieldnames, delimiter=delimiter)
            writer.writeheader()
            writer.writerows(rows)
        else:
            csv.writer(f, delimiter=delimiter).writerows(rows)


def write_csv(obj, path: Path, **kwargs):
    _write_delimited(obj, path, ",", **kwargs)


def write_tsv(obj, path: Path, **kwargs):
    _write_delimited(obj, path, "\t", **kwargs)


def write_json(obj, path: Path, encoding: str = "utf-8", indent: int = 2):
    path.write_text(json.dumps(obj, ensure_ascii=False, indent=indent), encoding=encoding)


def write_yaml(obj, path: Path, encoding: str = "utf-8"):
    path.write_text(yaml.safe_dump(obj, allow_unicode=True, sort_keys=False), encoding=encoding)


def write_text(obj, path: Path, encoding: str = "utf-8"):
    path.write_text(str(obj), encoding=encoding)


READERS: dict[str, Callable[..., Any]] = {
    "csv": read_csv,
    "tsv": read_tsv,
    "json": read_json,
    "yaml": read_yaml,
    "txt": read_text,
}

WRITERS: dict[str, Callable[..., None]] = {
    "csv": write_csv,
    "tsv": write_tsv,
    "json": write_json,
    "yaml": write_yaml,
    "txt": write_text,
}


def normalize_format(value: str) -> str:
    fmt = (value or "").strip().lower().lstrip(".")
    return FORMAT_ALIASES.get(fmt, fmt)


def resolve_format(file_name: str, content_type: Optional[str] = None, explicit: Optional[str] = None) -> str:
    if explicit:
        return normalize_format(explicit)

    ext = Path(file_name or "").suffix
    if ext:
        return normalize_format(ext)

    mime = (content_type or "").split(";")[0].strip().lower()
    if mime:
        if mime in MIME_FORMATS:
            return MIME_FORMATS[mime]
        guessed = mimetypes.guess_extension(mime)
        if guessed:
            return normalize_format(guessed)

    raise UnknownFormatError(f"unknown_format: name={file_name!r} content_type={content_type!r}")


def _accepts_format(func: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(func).parameters
    except (TypeError, ValueError):
        return False
    return "format" in params or any(p.kind == p.VAR_KEYWORD for p in params.values())


def box_read(
    client,
    file_id: str,
    read_fun: Optional[Callable[..., Any]] = None,
    format: Optional[str] = None,
    content_type: Optional[str] = None,
    version_id: Optional[str] = None,
    version_no: Optional[int] = None,
    **kwargs,
) -> Any:
    """Download ``file_id`` and parse it into memory.

    With ``read_fun`` given, it is called as ``read_fun(path, **kwargs)``, plus
    ``format=`` when its signature takes one. Otherwise the parser comes from
    ``READERS``. ``content_type`` replaces the type reported by Box when the
    name has no extension; ``version_id`` or ``version_no`` read an older
    version of the file.
    """
    with tempfile.TemporaryDirectory(prefix="boxsync-read-") as tmp:
        part = Path(tmp) / "download.part"
        info = client.download(file_id, str(part), version_id=version_id, version_no=version_no) or {}

        # Keep the original name so the extension survives.
        name = Path(info.get("filename") or str(file_id)).name
        path = Path(tmp) / name
        part.replace(path)

        try:
            fmt: Optional[str] = resolve_format(name, content_type or info.get("content_type"), format)
        except UnknownFormatError:
            if read_fun is None:
                raise
            fmt = None

        if read_fun is None:
            parser = READERS.get(fmt or "")
            if parser is None:
                raise UnknownFormatError(f"no_reader_for_format: {fmt}")
            content = parser(path, **kwargs)
        elif fmt and _accepts_format(read_fun):
            content = read_fun(path, format=fmt, **kwargs)
        else:
            content = read_fun(path, **kwargs)

    logger.info("remote_file_read file_id=%s name=%s type=%s", file_id, name, type(content).__name__)
    return content


def box_read_csv(client, file_id: str, **kwargs) -> list[dict[str, str]]:
    return box_read(client, file_id, format="csv", **kwargs)


def box_read_tsv(client, file_id: str, **kwargs) -> list[dict[str, str]]:
    return box_read(client, file_id, format="tsv", **kwargs)


def box_read_json(client, file_id: str, **kwargs) -> Any:
    return box_read(client, file_id, format="json", **kwargs)


def box_read_yaml(client, file_id: str, **kwargs) -> Any:
    return box_read(client, file_id, format="yaml", **kwargs)


def box_write(
    client,
    obj: Any,
    file_name: str,
    folder_id: str = "0",
    write_fun: Optional[Callable[..., None]] = None,
    format: Optional[str] = None,
    **kwargs,
) -> dict[str, Any]:
    """Serialize ``obj`` and upload it as ``file_name`` into ``folder_id``.

    An existing file of that name gets a new version instead of a duplicate.
    """
    if write_fun is None:
        fmt = resolve_format(file_name, None, format)
        write_fun = WRITERS.get(fmt)
        if write_fun is None:
            raise UnknownFormatError(f"no_writer_for_format: {fmt}")

    with tempfile.TemporaryDirectory(prefix="boxsync-write-") as tmp:
        path = Path(tmp) / Path(file_name).name
        write_fun(obj, path, **kwargs)
        item = client.upload(str(path), folder_id, file_name=Path(file_name).name)

    logger.info("remote_file_written name=%s folder_id=%s file_id=%s", file_name, folder_id, item.get("id"))
    return item
