"""Atomic YAML document I/O used by the state and checkpoint stores."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..errors import ErrorKind, WaymarkError

DOCUMENT_SUFFIXES = (".yaml", ".yml")


class DocumentDumper(yaml.SafeDumper):
    """Safe dumper that writes tuples as plain sequences and never emits aliases."""

    def ignore_aliases(self, data: Any) -> bool:
        return True


DocumentDumper.add_representer(tuple, yaml.SafeDumper.represent_list)


def _dump(data: Any) -> str:
    return yaml.dump(
        data,
        Dumper=DocumentDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=120,
    )


def find_unstorable(data: Any, prefix: str = "") -> Optional[str]:
    """Dotted path of the first value YAML cannot represent, if any."""
    if isinstance(data, dict):
        items = ((str(key), value) for key, value in data.items())
    elif isinstance(data, (list, tuple)):
        items = ((str(index), value) for index, value in enumerate(data))
    else:
        try:
            _dump(data)
        except yaml.YAMLError:
            return prefix or "."
        return None
    for key, value in items:
        found = find_unstorable(value, f"{prefix}.{key}" if prefix else key)
        if found:
            return found
    return None


def dump_document(data: Dict[str, Any]) -> str:
    """Render ``data`` as YAML; unrepresentable values raise ``InvalidState``."""
    try:
        return _dump(data)
    except yaml.YAMLError as exc:
        field = find_unstorable(data)
        raise WaymarkError(
            ErrorKind.INVALID_STATE,
            f"Value at {field} cannot be stored",
            {"field": field, "reason": str(exc)},
        ) from exc


def write_document(path: Path, data: Dict[str, Any]) -> None:
    """Write ``data`` to ``path`` atomically.

    The document is written to a temporary sibling, flushed to disk and then
    renamed over ``path``; readers see either the previous or the new version.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    content = dump_document(data)
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()

    if not path.exists():
        raise WaymarkError(
            ErrorKind.IO_ERROR,
            "Document was written but verification failed",
            {"filePath": str(path)},
        )


def read_document(path: Path) -> Dict[str, Any]:
    """Load a YAML mapping from ``path``.

    Raises ``NotFound`` for a missing file and ``ParseError`` for content that
    is not valid YAML or not a mapping.
    """
    if not path.exists():
        raise WaymarkError(
            ErrorKind.NOT_FOUND, f"Document not found: {path}", {"filePath": str(path)}
        )
    content = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise WaymarkError(
            ErrorKind.PARSE_ERROR,
            f"Failed to parse document: {exc}",
            {"filePath": str(path)},
        ) from exc
    if not isinstance(data, dict):
        raise WaymarkError(
            ErrorKind.PARSE_ERROR,
            "Document contains invalid data",
            {"filePath": str(path)},
        )
    return data
