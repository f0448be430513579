"""Tests for document extraction and context aggregation."""

import asyncio
import os

import fitz
import pytest

from qcm_explain.errors import ExtractionError, NotFound
from qcm_explain.models import ModuleContextFile
from qcm_explain.services.context import ADHOC_SEPARATOR, ContextAggregator, DocumentExtractor, UploadedDocument


def pdf_bytes(text):
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def upload_dir(tmp_path):
    (tmp_path / "notes.txt").write_text("Mitral stenosis causes a diastolic murmur.", encoding="utf-8")
    (tmp_path / "course.pdf").write_bytes(pdf_bytes("Aortic stenosis radiates to the carotids."))
    (tmp_path / "scan.png").write_bytes(b"\x89PNG not a document")
    return tmp_path


@pytest.fixture
def aggregator(db, upload_dir):
    return ContextAggregator(db, DocumentExtractor(upload_dir))


def attach(db, module, *names):
    for name in names:
        db.add(ModuleContextFile(module_id=module.id, filename=name, url=f"/{name}", size=1))
    db.commit()
    db.expire(module)


class TestExtractor:
    def test_pdf(self, upload_dir):
        text = asyncio.run(DocumentExtractor(upload_dir).extract("course.pdf", "course.pdf"))
        assert "Aortic stenosis" in text

    def test_unsupported_type(self, upload_dir):
        with pytest.raises(ExtractionError):
            asyncio.run(DocumentExtractor(upload_dir).extract("scan.png", "scan.png"))

    def test_missing_file(self, upload_dir):
        with pytest.raises(ExtractionError) as exc:
            asyncio.run(DocumentExtractor(upload_dir).extract("gone.pdf", "gone.pdf"))
        assert exc.value.details["filename"] == "gone.pdf"

    def test_root_relative_url_reads_from_upload_dir(self, upload_dir):
        text = asyncio.run(DocumentExtractor(upload_dir).extract("notes.txt", "/notes.txt"))
        assert "diastolic murmur" in text

    def test_url_with_mount_prefix(self, tmp_path):
        uploads = tmp_path / "uploads"
        (uploads / "qcm").mkdir(parents=True)
        (uploads / "qcm" / "valves.txt").write_text("Aortic valve area.", encoding="utf-8")
        text = asyncio.run(DocumentExtractor(uploads).extract("valves.txt", "/uploads/qcm/valves.txt"))
        assert text == "Aortic valve area."

    def test_path_escaping_upload_dir_rejected(self, tmp_path):
        uploads = tmp_path / "uploads"
        uploads.mkdir()
        (tmp_path / "secret.txt").write_text("do not read", encoding="utf-8")
        with pytest.raises(ExtractionError) as exc:
            asyncio.run(DocumentExtractor(uploads).extract("secret.txt", "/../secret.txt"))
        assert "outside the upload directory" in exc.value.message

    def test_broken_pdf(self, upload_dir):
        with pytest.raises(ExtractionError):
            asyncio.run(DocumentExtractor(upload_dir).extract_bytes("bad.pdf", b"%PDF-1.4 garbage"))


class TestBuildContext:
    def test_module_documents_prefixed_with_filename(self, db, aggregator, module):
        attach(db, module, "notes.txt", "course.pdf")
        context = asyncio.run(aggregator.build_context(module.id))
        assert context.index("=== Document: notes.txt ===") < context.index("=== Document: course.pdf ===")
        assert "diastolic murmur" in context
        assert "carotids" in context

    def test_failed_documents_are_skipped(self, db, aggregator, module):
        attach(db, module, "scan.png", "missing.pdf", "notes.txt")
        context = asyncio.run(aggregator.build_context(module.id))
        assert "scan.png" not in context
        assert "missing.pdf" not in context
        assert "diastolic murmur" in context

    def test_ad_hoc_document_comes_last(self, db, aggregator, module):
        attach(db, module, "notes.txt")
        upload = UploadedDocument("extra.txt", "Tricuspid regurgitation.".encode("utf-8"))
        context = asyncio.run(aggregator.build_context(module.id, upload))
        assert context.index("notes.txt") < context.index(ADHOC_SEPARATOR)
        assert context.endswith("Tricuspid regurgitation.")

    def test_nothing_available_gives_empty_string(self, db, aggregator, module):
        assert asyncio.run(aggregator.build_context(module.id)) == ""
        assert asyncio.run(aggregator.build_context()) == ""
        attach(db, module, "scan.png")
        assert asyncio.run(aggregator.build_context(module.id, UploadedDocument("x.bin", b"??"))) == ""

    def test_unknown_module(self, aggregator):
        with pytest.raises(NotFound):
            asyncio.run(aggregator.build_context(999))


class TestExtractUpload:
    def test_returns_text_and_deletes_temporary_file(self, aggregator, monkeypatch):
        seen = []
        original = aggregator.extractor.extract_path

        async def spy(filename, path):
            seen.append(path)
            assert os.path.exists(path)
            return await original(filename, path)

        monkeypatch.setattr(aggregator.extractor, "extract_path", spy)
        result = asyncio.run(aggregator.extract_upload("lecture.pdf", pdf_bytes("Heart failure staging.")))
        assert "Heart failure" in result["text"]
        assert result["length"] == len(result["text"])
        assert seen and not os.path.exists(seen[0])

    def test_failed_extraction_still_deletes_file(self, aggregator, monkeypatch):
        seen = []
        original = aggregator.extractor.extract_path

        async def spy(filename, path):
            seen.append(path)
            return await original(filename, path)

        monkeypatch.setattr(aggregator.extractor, "extract_path", spy)
        with pytest.raises(ExtractionError):
            asyncio.run(aggregator.extract_upload("image.png", b"not text"))
        assert seen and not os.path.exists(seen[0])
