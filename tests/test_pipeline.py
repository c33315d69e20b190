"""Тесты оркестратора пайплайна."""

import base64

import pytest

from conftest import (
    make_fake_converter,
    make_render_step,
    make_reverse_latency_extractor,
    residual_files,
    stub_extractor,
)
from converter.errors import ConversionFailed, ExtractionFailed, RasterizationFailed
from converter.schemas import PageText, SourceDocument
from converter.services.pipeline import (
    DocumentPipeline,
    assemble_markdown,
    pdf_filename,
    sanitize,
)


def make_source(upload_dir, name: str, suffix: str = None) -> SourceDocument:
    suffix = suffix or "." + name.rsplit(".", 1)[-1]
    path = upload_dir / f"upload-id{suffix}"
    path.write_bytes(b"%PDF-1.4\n" if suffix.lower() == ".pdf" else b"PK\x03\x04docx")
    return SourceDocument(path=path, original_name=name)


def make_pipeline(registry, total_pages=3, fail_on=None, extractor=stub_extractor, **kwargs):
    return DocumentPipeline(
        registry=registry,
        extractor=extractor,
        converter=kwargs.pop("converter", make_fake_converter()),
        render_step=make_render_step(total_pages, fail_on=fail_on),
        max_pages=kwargs.pop("max_pages", 10),
        concurrency=kwargs.pop("concurrency", 5),
    )


class TestAssemble:
    def test_sections_in_page_order(self):
        markdown = assemble_markdown(
            [PageText(2, "second"), PageText(1, "first")]
        )
        assert markdown == "### Page 1\n\nfirst\n\n### Page 2\n\nsecond\n\n"

    def test_sanitize_strips_control_characters(self):
        assert sanitize("a\u0007b\u0000c\nd\te\u001f") == "abcde"

    def test_sanitize_keeps_unicode(self):
        assert sanitize("Привет\u0007, мир") == "Привет, мир"

    def test_pdf_filename(self):
        assert pdf_filename("report.docx") == "report.pdf"
        assert pdf_filename("archive.tar.xlsx") == "archive.tar.pdf"


class TestProcess:
    @pytest.mark.asyncio
    async def test_three_page_document(self, registry, upload_dir):
        pipeline = make_pipeline(registry, total_pages=3)
        source = make_source(upload_dir, "report.docx")

        result = await pipeline.process(source)

        assert result.pages_count == 3
        positions = [result.markdown.index(f"### Page {n}") for n in (1, 2, 3)]
        assert positions == sorted(positions)
        for n in (1, 2, 3):
            assert f"Page {n} text" in result.markdown
        assert result.original_name == "report.pdf"
        assert result.job_id in registry

    @pytest.mark.asyncio
    async def test_order_with_reverse_latency(self, registry, upload_dir):
        pipeline = make_pipeline(
            registry, total_pages=6, extractor=make_reverse_latency_extractor(6)
        )
        result = await pipeline.process(make_source(upload_dir, "scan.pdf"))

        expected = "".join(f"### Page {n}Page {n} text" for n in range(1, 7))
        assert result.markdown == expected

    @pytest.mark.asyncio
    async def test_control_characters_removed_and_base64_matches(self, registry, upload_dir):
        async def noisy_extractor(image_bytes: bytes) -> str:
            return "bell\u0007here\u0000"

        pipeline = make_pipeline(registry, total_pages=2, extractor=noisy_extractor)
        result = await pipeline.process(make_source(upload_dir, "doc.pdf"))

        assert "\u0007" not in result.markdown
        assert "\u0000" not in result.markdown
        assert "\n" not in result.markdown
        assert base64.b64decode(result.markdown_base64).decode("utf-8") == result.markdown

    @pytest.mark.asyncio
    async def test_only_registered_pdf_remains(self, registry, upload_dir):
        pipeline = make_pipeline(registry, total_pages=3)
        result = await pipeline.process(make_source(upload_dir, "report.docx"))

        job = registry.retrieve(result.job_id)
        assert residual_files(upload_dir) == [job.pdf_path]

    @pytest.mark.asyncio
    async def test_pdf_upload_is_registered_as_is(self, registry, upload_dir):
        source = make_source(upload_dir, "scan.PDF")
        pipeline = make_pipeline(registry, total_pages=1)

        result = await pipeline.process(source)

        job = registry.retrieve(result.job_id)
        assert job.pdf_path == source.path
        assert residual_files(upload_dir) == [source.path]

    @pytest.mark.asyncio
    async def test_page_limit(self, registry, upload_dir):
        pipeline = make_pipeline(registry, total_pages=15, max_pages=10)
        result = await pipeline.process(make_source(upload_dir, "long.pdf"))
        assert result.pages_count == 10

    @pytest.mark.asyncio
    async def test_later_page_failure_truncates(self, registry, upload_dir):
        pipeline = make_pipeline(registry, total_pages=5, fail_on=3)
        result = await pipeline.process(make_source(upload_dir, "doc.pdf"))

        assert result.pages_count == 2
        assert "### Page 3" not in result.markdown


class TestFailureCleanup:
    @pytest.mark.asyncio
    async def test_conversion_failure(self, registry, upload_dir):
        pipeline = make_pipeline(registry, converter=make_fake_converter(fail=True))

        with pytest.raises(ConversionFailed):
            await pipeline.process(make_source(upload_dir, "report.docx"))

        assert residual_files(upload_dir) == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_converter_crash_is_conversion_failure(self, registry, upload_dir):
        async def crashing_converter(path):
            raise OSError("disk full")

        pipeline = make_pipeline(registry, converter=crashing_converter)

        with pytest.raises(ConversionFailed) as exc_info:
            await pipeline.process(make_source(upload_dir, "report.docx"))

        assert "disk full" in exc_info.value.detail
        assert residual_files(upload_dir) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["report.docx", "scan.pdf"])
    async def test_first_page_failure_leaves_no_files(self, registry, upload_dir, name):
        pipeline = make_pipeline(registry, total_pages=3, fail_on=1)

        with pytest.raises(RasterizationFailed):
            await pipeline.process(make_source(upload_dir, name))

        assert residual_files(upload_dir) == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_extraction_failure_leaves_no_files(self, registry, upload_dir):
        async def failing_extractor(image_bytes: bytes) -> str:
            raise TimeoutError("OpenAI timeout")

        pipeline = make_pipeline(registry, total_pages=4, extractor=failing_extractor)

        with pytest.raises(ExtractionFailed):
            await pipeline.process(make_source(upload_dir, "report.docx"))

        assert residual_files(upload_dir) == []
        assert len(registry) == 0


class TestConvertOnly:
    @pytest.mark.asyncio
    async def test_office_document(self, registry, upload_dir):
        source = make_source(upload_dir, "report.docx")
        pipeline = make_pipeline(registry)

        converted = await pipeline.convert_only(source)

        assert converted.filename == "report.pdf"
        assert converted.pdf_path.read_bytes().startswith(b"%PDF")
        assert sorted(converted.cleanup_paths) == sorted([source.path, converted.pdf_path])
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_pdf_passthrough(self, registry, upload_dir):
        source = make_source(upload_dir, "scan.pdf")
        converted = await make_pipeline(registry).convert_only(source)

        assert converted.pdf_path == source.path
        assert converted.filename == "scan.pdf"
        assert converted.cleanup_paths == [source.path]

    @pytest.mark.asyncio
    async def test_failure_cleans_upload(self, registry, upload_dir):
        pipeline = make_pipeline(registry, converter=make_fake_converter(fail=True))

        with pytest.raises(ConversionFailed):
            await pipeline.convert_only(make_source(upload_dir, "report.docx"))

        assert residual_files(upload_dir) == []


@pytest.mark.asyncio
async def test_rendering_stops_after_extraction_failure(registry, upload_dir):
    rendered = []
    render_step = make_render_step(10)

    def recording_render_step(pdf_path, page_number, scratch_dir):
        rendered.append(page_number)
        return render_step(pdf_path, page_number, scratch_dir)

    async def extractor(image_bytes: bytes) -> str:
        raise ConnectionError("service unavailable")

    pipeline = DocumentPipeline(
        registry=registry,
        extractor=extractor,
        converter=make_fake_converter(),
        render_step=recording_render_step,
        max_pages=10,
        concurrency=5,
    )

    with pytest.raises(ExtractionFailed):
        await pipeline.process(make_source(upload_dir, "report.docx"))

    assert rendered and max(rendered) <= 3
    assert residual_files(upload_dir) == []
