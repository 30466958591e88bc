"""Description of an upload and its JSON encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

_SEPARATORS = (",", ":")

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _encode(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=_SEPARATORS)


@dataclass
class FileInfo:
    """General information about an upload: size, offset, metadata and storage."""

    id: str = ""
    size: int = 0
    size_is_deferred: bool = False
    offset: int = 0
    meta_data: dict[str, str] | None = None
    is_partial: bool = False
    is_final: bool = False
    partial_uploads: list[str] | None = None
    storage: dict[str, str] | None = None

    def to_json(self) -> bytes:
        """Encode as compact UTF-8 JSON with a fixed field order and sorted maps."""
        fields = (
            ("ID", self.id),
            ("Size", self.size),
            ("SizeIsDeferred", self.size_is_deferred),
            ("Offset", self.offset),
            ("MetaData", self.meta_data),
            ("IsPartial", self.is_partial),
            ("IsFinal", self.is_final),
            ("PartialUploads", self.partial_uploads),
            ("Storage", self.storage),
        )
        text = "{" + ",".join(f"{_encode(k)}:{_encode(v)}" for k, v in fields) + "}"
        for char, escaped in _ESCAPES.items():
            text = text.replace(char, escaped)
        return text.encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> FileInfo:
        """Decode a JSON object; missing fields keep their defaults."""
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("file info must be a JSON object")
        fields = {key.lower(): value for key, value in obj.items()}
        fields.update({key: value for key, value in obj.items()})

        def get(name: str, default: Any) -> Any:
            value = fields.get(name, fields.get(name.lower(), default))
            return default if value is None and default is not None else value

        meta = get("MetaData", None)
        partials = get("PartialUploads", None)
        storage = get("Storage", None)
        return cls(
            id=get("ID", ""),
            size=int(get("Size", 0)),
            size_is_deferred=bool(get("SizeIsDeferred", False)),
            offset=int(get("Offset", 0)),
            meta_data=dict(meta) if meta is not None else None,
            is_partial=bool(get("IsPartial", False)),
            is_final=bool(get("IsFinal", False)),
            partial_uploads=list(partials) if partials is not None else None,
            storage=dict(storage) if storage is not None else None,
        )