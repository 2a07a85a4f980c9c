"""
Local File System Connector Module.

Provides connector for synchronizing documents from a local file or
directory of PDF, Word, text, markdown, JSON and JSON Lines files.
"""

import asyncio
import hashlib
import json
import logging
import os
import time
import zipfile
from datetime import datetime, timezone
from fnmatch import fnmatch
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from fastrag.config.settings import ConnectorSettings
from fastrag.sync.connectors.base import (
    ConnectionStatus,
    ConnectorFactory,
    ConnectorRuntime,
    FetchOutcome,
)
from fastrag.sync.connectors.normalizer import ResponseNormalizer
from fastrag.sync.errors import DataSourceConnectionError, DataSourceError, invalid_config
from fastrag.sync.models import (
    SUPPORTED_FILE_TYPES,
    ConnectorMetrics,
    Content,
    DataSource,
    DataSourceHealth,
    DataSourceType,
    SyncResult,
    utc_now,
)

logger = logging.getLogger(__name__)

TEXT_FILE_TYPES = ("txt", "md")
DOCUMENT_FILE_TYPES = ("pdf", "docx")

# Failures that skip a single file instead of failing the sync
UNREADABLE_FILE_ERRORS = (
    OSError,
    UnicodeDecodeError,
    ValueError,
    PdfReadError,
    PackageNotFoundError,
    zipfile.BadZipFile,
)


class FileConnector:
    """
    Local File System Connector.

    Supports:
    - A single file or a directory, optionally scanned recursively
    - PDF (pypdf) and Word (python-docx) text extraction
    - Allowed file types and exclude glob patterns
    - Incremental sync by file modification time
    """

    def __init__(
        self,
        data_source: DataSource,
        settings: Optional[ConnectorSettings] = None
    ):
        """Initialize local file connector."""
        if data_source.type != DataSourceType.FILE:
            raise invalid_config(
                f"FileConnector cannot serve a {data_source.type.value} data source",
                data_source.id
            )
        data_source.config.validate_for(DataSourceType.FILE, data_source.id)

        self.data_source = data_source
        self.file_config = data_source.config
        self.runtime = ConnectorRuntime(data_source, settings, logger_name=__name__)
        self.allowed_types = set(self.file_config.file_types or SUPPORTED_FILE_TYPES)
        self.normalizer = ResponseNormalizer(
            data_source.id,
            source_type=DataSourceType.FILE.value,
            log=self.runtime.log
        )
        self._base_path: Optional[Path] = None

    async def connect(self) -> None:
        """Verify the configured path is readable."""
        await self.runtime.connect(self._probe)

    async def disconnect(self) -> None:
        """Disconnect from local file system."""
        self._base_path = None
        self.runtime.set_status(ConnectionStatus.DISCONNECTED)
        self.runtime.log.info("Disconnected from local file system")

    async def validate_connection(self) -> bool:
        try:
            await self._probe()
            return True
        except DataSourceError as e:
            self.runtime.log.warning(f"Connection validation failed: {e}")
            return False

    async def health_check(self) -> DataSourceHealth:
        """Check the configured path is still accessible."""
        return await self.runtime.health_check(self._probe)

    async def _probe(self) -> Path:
        path = Path(self.file_config.file_path).expanduser().resolve()

        if not path.exists():
            raise DataSourceConnectionError(f"Path not found: {path}", self.data_source.id)

        if not os.access(path, os.R_OK):
            raise DataSourceConnectionError(f"No read access to: {path}", self.data_source.id)

        self._base_path = path
        return path

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def _fetch(self, since: Optional[datetime]) -> FetchOutcome:
        await self.connect()

        files = await asyncio.to_thread(self._list_files, since)
        self.runtime.log.debug(f"Found {len(files)} files to process")

        outcome = FetchOutcome()
        for file_path in files:
            started = time.monotonic()
            try:
                contents = await self._read_file(file_path)
            except UNREADABLE_FILE_ERRORS as e:
                self.runtime.metrics.record(False, (time.monotonic() - started) * 1000)
                self.runtime.log.warning(f"Skipping unreadable file {file_path}: {e}")
                continue

            self.runtime.metrics.record(True, (time.monotonic() - started) * 1000)
            outcome.contents.extend(contents)
            outcome.requests += 1

        return outcome

    @staticmethod
    def _file_type(file_path: Path) -> str:
        return file_path.suffix.lower().lstrip(".")

    def _is_excluded(self, relative: Path) -> bool:
        candidates = (relative.as_posix(), relative.name)
        return any(
            fnmatch(candidate, pattern)
            for pattern in self.file_config.exclude_patterns
            for candidate in candidates
        )

    def _list_files(self, since: Optional[datetime] = None) -> List[Path]:
        """List eligible files in a stable order."""
        base = self._base_path
        if base is None:
            return []

        if base.is_file():
            candidates = [base]
            root = base.parent
        else:
            candidates = base.rglob("*") if self.file_config.recursive else base.glob("*")
            root = base

        cutoff = since.timestamp() if since else None
        files = []
        for path in candidates:
            if not path.is_file():
                continue
            if self._file_type(path) not in self.allowed_types:
                continue
            if self._is_excluded(path.relative_to(root)):
                continue
            if cutoff is not None and path.stat().st_mtime <= cutoff:
                continue
            files.append(path)

        return sorted(files)

    def _document_id(self, file_path: Path) -> str:
        key = f"{self.data_source.id}:{file_path}"
        return hashlib.md5(key.encode()).hexdigest()

    @staticmethod
    def _title(file_path: Path, text: str, file_type: str) -> str:
        if file_type == "md":
            for line in text.splitlines():
                stripped = line.strip()
                if stripped.startswith("# "):
                    return stripped[2:].strip() or file_path.stem
        return file_path.stem

    @staticmethod
    def _extract_pdf(data: bytes) -> Dict[str, Any]:
        """Extract text from PDF bytes, one block per page with text."""
        reader = PdfReader(BytesIO(data))
        pages = []
        for page in reader.pages:
            page_text = page.extract_text() or ""
            if page_text.strip():
                pages.append(page_text.strip())

        return {"text": "\n\n".join(pages), "metadata": {"page_count": len(reader.pages)}}

    @staticmethod
    def _extract_docx(data: bytes) -> Dict[str, Any]:
        """Extract non-empty paragraphs from a Word document."""
        document = DocxDocument(BytesIO(data))
        paragraphs = [p.text for p in document.paragraphs if p.text.strip()]
        return {"text": "\n".join(paragraphs), "metadata": {"paragraph_count": len(paragraphs)}}

    async def _read_document(self, file_path: Path, file_type: str) -> Dict[str, Any]:
        async with aiofiles.open(file_path, "rb") as f:
            data = await f.read()

        extract = self._extract_pdf if file_type == "pdf" else self._extract_docx
        return await asyncio.to_thread(extract, data)

    def _parse_json_lines(self, file_path: Path, text: str) -> List[Any]:
        items = []
        for line_number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                items.append(json.loads(line))
            except json.JSONDecodeError as e:
                self.runtime.log.warning(
                    f"Skipping malformed line {line_number} in {file_path}: {e}"
                )
        return items

    def _file_document(
        self,
        file_path: Path,
        text: str,
        file_type: str,
        file_metadata: Dict[str, Any],
        modified_at: datetime
    ) -> Content:
        return Content(
            id=self._document_id(file_path),
            source_id=self.data_source.id,
            title=self._title(file_path, text, file_type),
            text=text,
            metadata={
                "source_type": DataSourceType.FILE.value,
                **file_metadata,
                "fetched_at": utc_now().isoformat()
            },
            last_updated=modified_at
        )

    async def _read_file(self, file_path: Path) -> List[Content]:
        """Read one file into documents."""
        stat = file_path.stat()
        modified_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        file_type = self._file_type(file_path)
        file_metadata: Dict[str, Any] = {
            "file_path": str(file_path),
            "file_name": file_path.name,
            "file_type": file_type,
            "file_size": stat.st_size,
            "modified_at": modified_at.isoformat(),
        }

        if file_type in DOCUMENT_FILE_TYPES:
            extracted = await self._read_document(file_path, file_type)
            text = extracted["text"].strip()
            if not text:
                self.runtime.log.debug(f"No extractable text in {file_path}")
                return []
            file_metadata.update(extracted["metadata"])
            return [self._file_document(file_path, text, file_type, file_metadata, modified_at)]

        async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
            text = await f.read()

        if file_type in TEXT_FILE_TYPES:
            if not text.strip():
                return []
            return [self._file_document(file_path, text, file_type, file_metadata, modified_at)]

        if file_type == "jsonl":
            payload = self._parse_json_lines(file_path, text)
        else:
            payload = json.loads(text)

        contents = []
        for item in self.normalizer.extract_items(payload):
            content = self.normalizer.to_content(item, extra_metadata=file_metadata)
            if content is not None:
                contents.append(content)
        return contents

    # ------------------------------------------------------------------
    # Sync and accessors
    # ------------------------------------------------------------------

    async def sync(self, incremental: bool = True) -> SyncResult:
        """Sync all documents, or only those changed since last_sync."""
        return await self.runtime.run_sync(self.connect, self._fetch, incremental)

    async def get_content(self, last_sync: Optional[datetime] = None) -> List[Content]:
        """Fetch every document changed after last_sync (all when None)."""
        return (await self._fetch(last_sync)).contents

    @property
    def status(self) -> ConnectionStatus:
        return self.runtime.status

    def get_connection_status(self) -> bool:
        return self.runtime.is_connected

    def get_metrics(self) -> ConnectorMetrics:
        return self.runtime.metrics.snapshot()

    def reset_metrics(self) -> None:
        self.runtime.metrics.reset()

    def get_data_source(self) -> DataSource:
        return self.data_source.model_copy(deep=True)

    def get_last_health_check(self) -> Optional[datetime]:
        return self.runtime.last_health_check

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()


# Register connector
ConnectorFactory.register(DataSourceType.FILE, FileConnector)
