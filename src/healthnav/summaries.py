"""Document summary lookup for documents attached to a turn."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import urlparse

from healthnav.config import settings

SUMMARY_FILENAME = "summary_translated.txt"


class SummaryStore(Protocol):
    def get(self, container: str, document_ref: str) -> str: ...


class FileSummaryStore:
    """Summaries stored as text files next to each document in its container.

    A document at ``<container>/<dir>/report.pdf`` has its summary at
    ``<root>/<container>/<dir>/summary_translated.txt``.
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.summaries_dir).resolve()

    def path_for(self, container: str, document_ref: str) -> Path:
        parent = PurePosixPath(urlparse(document_ref).path.lstrip("/")).parent
        path = (self.root / container / parent / SUMMARY_FILENAME).resolve()
        if not path.is_relative_to(self.root):
            raise ValueError(f"Document reference escapes the summary store: {document_ref}")
        return path

    def get(self, container: str, document_ref: str) -> str:
        return self.path_for(container, document_ref).read_text(encoding="utf-8")
