"""Serialization of hour windows into local archive files."""

from cronlog.archive.writer import Artifact, ArchiveWriter

__all__ = ["Artifact", "ArchiveWriter"]
