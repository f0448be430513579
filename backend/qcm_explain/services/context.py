from __future__ import annotations
import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Union

import fitz  # PyMuPDF
import httpx
from sqlalchemy.orm import Session

from ..errors import ExtractionError, NotFound
from ..models import Module, ModuleContextFile

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt", ".md", ".csv"}

ADHOC_SEPARATOR = "=== Additional reference document ==="


class UploadedDocument(NamedTuple):
	filename: str
	data: bytes


class DocumentExtractor:
	"""Turns PDF or plain-text documents into text.

	Documents are addressed by an http(s) URL or by a path, relative paths
	being resolved against the upload directory.
	"""

	def __init__(self, upload_dir: Union[str, Path] = ".", *, http_timeout: float = 30.0) -> None:
		self.upload_dir = Path(upload_dir)
		self.http_timeout = http_timeout

	async def extract(self, filename: str, location: str) -> str:
		data = await self._read(filename, location)
		return await self.extract_bytes(filename, data)

	async def extract_bytes(self, filename: str, data: bytes) -> str:
		return await asyncio.to_thread(self._extract_sync, filename, data)

	async def extract_path(self, filename: str, path: Union[str, Path]) -> str:
		data = await asyncio.to_thread(Path(path).read_bytes)
		return await self.extract_bytes(filename, data)

	async def _read(self, filename: str, location: str) -> bytes:
		if location.startswith(("http://", "https://")):
			try:
				async with httpx.AsyncClient(timeout=self.http_timeout) as client:
					r = await client.get(location)
					r.raise_for_status()
					return r.content
			except httpx.HTTPError as err:
				raise ExtractionError(filename, f"download failed ({err})") from err
		path = self.resolve_upload(filename, location)
		try:
			return await asyncio.to_thread(path.read_bytes)
		except OSError as err:
			raise ExtractionError(filename, f"cannot read {path} ({err.strerror or err})") from err

	def resolve_upload(self, filename: str, location: str) -> Path:
		"""Map a stored upload URL ("/uploads/qcm/x.pdf", "/x.pdf", "x.pdf") into the upload directory."""
		root = self.upload_dir.resolve()
		parts = Path(location.lstrip("/")).parts
		# Stored URLs carry the public mount name of the upload directory
		if len(parts) > 1 and parts[0] == root.name:
			parts = parts[1:]
		path = root.joinpath(*parts).resolve()
		if path != root and root not in path.parents:
			raise ExtractionError(filename, "path outside the upload directory")
		return path

	def _extract_sync(self, filename: str, data: bytes) -> str:
		suffix = Path(filename).suffix.lower()
		if suffix == ".pdf" or data[:5] == b"%PDF-":
			text = self._pdf_text(filename, data)
		elif suffix in TEXT_SUFFIXES:
			text = data.decode("utf-8", errors="replace")
		else:
			raise ExtractionError(filename, "unsupported document type")
		text = text.strip()
		if not text:
			raise ExtractionError(filename, "no extractable text")
		return text

	@staticmethod
	def _pdf_text(filename: str, data: bytes) -> str:
		try:
			with fitz.open(stream=data, filetype="pdf") as doc:
				return "\n".join(page.get_text("text") for page in doc)
		except Exception as err:
			raise ExtractionError(filename, f"invalid PDF ({err})") from err


class ContextAggregator:
	"""Builds the context blob fed to AI generation from reference documents."""

	def __init__(self, db: Session, extractor: DocumentExtractor) -> None:
		self.db = db
		self.extractor = extractor

	async def build_context(self, module_id: Optional[int] = None, ad_hoc_document: Optional[UploadedDocument] = None) -> str:
		"""Concatenate the module's documents, then the ad hoc document.

		Documents that cannot be extracted are skipped. An empty string means
		there is nothing to enrich the prompt with.
		"""
		parts: List[str] = []
		if module_id is not None:
			for ref in self._module_files(module_id):
				try:
					text = await self.extractor.extract(ref.filename, ref.url)
				except ExtractionError as err:
					logger.warning("Skipping context file %s of module %s: %s", ref.filename, module_id, err.message)
					continue
				parts.append(f"=== Document: {ref.filename} ===\n{text}")
			logger.info("Module %s context: %s document(s) extracted", module_id, len(parts))
		if ad_hoc_document is not None:
			try:
				text = await self.extractor.extract_bytes(ad_hoc_document.filename, ad_hoc_document.data)
			except ExtractionError as err:
				logger.warning("Skipping uploaded context document: %s", err.message)
			else:
				parts.append(f"{ADHOC_SEPARATOR}\n{text}")
		return "\n\n".join(parts)

	async def extract_upload(self, filename: str, data: bytes) -> Dict[str, object]:
		"""Extract an uploaded document through a temporary file that is always removed."""
		suffix = Path(filename).suffix
		fd, tmp_path = tempfile.mkstemp(suffix=suffix, prefix="context-")
		try:
			with os.fdopen(fd, "wb") as fh:
				fh.write(data)
			text = await self.extractor.extract_path(filename, tmp_path)
		finally:
			try:
				os.remove(tmp_path)
			except OSError:
				logger.warning("Could not delete temporary upload %s", tmp_path)
		return {"text": text, "length": len(text)}

	def _module_files(self, module_id: int) -> List[ModuleContextFile]:
		module = self.db.get(Module, module_id)
		if module is None:
			raise NotFound(f"Module {module_id} not found", module_id=module_id)
		return list(module.context_files)
