"""
Archive Writer

Serializes the records of one hour slot into a single local file. Supported
formats:
- json:  a JSON array (an empty hour is written as "[]")
- jsonl: one JSON object per line
- csv:   header row from the union of record keys, in first-seen order
- txt:   one str(record) per line

Files are written to a temporary sibling and renamed into place, so a crash
never leaves a half-written artifact under the final name.
"""

import csv
import io
import json
import logging
import os
import tempfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from cronlog.core.errors import WriteError
from cronlog.core.paths import get_artifact_path

logger = logging.getLogger(__name__)


@dataclass
class Artifact:
    """A local file holding one slot's records."""

    path: Path
    record_count: int
    size_bytes: int
    file_format: str


def _to_json(records: Sequence[dict[str, Any]]) -> str:
    return json.dumps(list(records), indent=2, default=str, ensure_ascii=False)


def _to_jsonl(records: Sequence[dict[str, Any]]) -> str:
    return "".join(json.dumps(r, default=str, ensure_ascii=False) + "\n" for r in records)


def _to_csv(records: Sequence[dict[str, Any]]) -> str:
    if not records:
        return ""

    fieldnames: list[str] = []
    for record in records:
        for key in record:
            if key not in fieldnames:
                fieldnames.append(key)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames, restval="", lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow(
            {
                k: json.dumps(v, default=str) if isinstance(v, dict | list) else v
                for k, v in record.items()
            }
        )
    return buffer.getvalue()


def _to_txt(records: Sequence[dict[str, Any]]) -> str:
    return "".join(f"{record}\n" for record in records)


SERIALIZERS: dict[str, Callable[[Sequence[dict[str, Any]]], str]] = {
    "json": _to_json,
    "jsonl": _to_jsonl,
    "csv": _to_csv,
    "txt": _to_txt,
}


class ArchiveWriter:
    """Writes one artifact per slot attempt under the staging directory."""

    def __init__(self, output_dir: Path | str, file_format: str = "json"):
        if file_format not in SERIALIZERS:
            raise ValueError(f"Unsupported file format: {file_format}")
        self.output_dir = Path(output_dir)
        self.file_format = file_format
        self._serialize = SERIALIZERS[file_format]

    def artifact_path(self, job_date: date, hour_range: str, attempt: int | None = None) -> Path:
        return get_artifact_path(self.output_dir, job_date, hour_range, self.file_format, attempt)

    def write(
        self,
        job_date: date,
        hour_range: str,
        records: Sequence[dict[str, Any]],
        attempt: int | None = None,
    ) -> Artifact:
        """
        Serialize records to the artifact path of the slot attempt, replacing
        any leftover file at that path.

        Raises:
            WriteError: On serialization or filesystem failure
        """
        path = self.artifact_path(job_date, hour_range, attempt)

        try:
            content = self._serialize(records).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise WriteError(f"Cannot serialize {len(records)} records as {self.file_format}: {e}") from e

        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise WriteError(f"Cannot write artifact {path}: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.debug(f"Wrote {len(records)} records ({len(content)} bytes) to {path}")
        return Artifact(
            path=path,
            record_count=len(records),
            size_bytes=len(content),
            file_format=self.file_format,
        )

    def discard(self, path: Path | str) -> bool:
        """Remove a leftover artifact. Returns True if a file was removed."""
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            return False
