"""
Оркестратор пайплайна: документ -> PDF -> страницы -> текст.

Этапы одного запроса:
    1. EnsurePdf  — PDF пропускается как есть, остальное конвертируется
    2. Rasterize  — постраничный рендер в scratch-каталог
    3. Extract    — извлечение текста с ограничением параллельности
    4. Assemble   — сборка markdown по порядку страниц + очистка
                    управляющих символов
    5. Finalize   — удаление картинок и scratch-каталога; PDF уходит
                    в реестр задач (или удаляется после ответа)

Любая ошибка этапа прерывает запрос: все артефакты, созданные
в рамках запроса, удаляются до того, как ошибка уйдёт наверх.

Два варианта входа:
    convert_only — вернуть PDF напрямую, без задачи
    process      — вернуть текст и зарегистрировать задачу на скачивание
"""

import base64
import logging
import re
import time
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Optional

from starlette.concurrency import run_in_threadpool

from converter.config import settings
from converter.errors import (
    ConversionFailed,
    ExtractionFailed,
    PipelineError,
    RasterizationFailed,
)
from converter.schemas import (
    ConversionResult,
    ConvertedDocument,
    PageText,
    ProcessResult,
    SourceDocument,
)
from converter.services.artifacts import ArtifactStore
from converter.services.document_converter import convert_to_pdf
from converter.services.extraction_pool import TextExtractor, extract_pages
from converter.services.job_registry import JobRegistry
from converter.services.pdf_processor import RenderStep, iter_pages

logger = logging.getLogger(__name__)

Converter = Callable[[Path], Awaitable[ConversionResult]]

# Все C0 управляющие символы, включая \n и \t
CONTROL_CHARS = re.compile(r"[\x00-\x1f]")


def assemble_markdown(pages_text: list[PageText]) -> str:
    """
    Склеивает тексты страниц в один документ с заголовком на страницу.

    Args:
        pages_text: тексты страниц (сортируются по номеру)

    Returns:
        str: markdown вида "### Page N\\n\\n<текст>\\n\\n" для каждой страницы
    """
    ordered = sorted(pages_text, key=lambda p: p.page_number)
    return "".join(f"### Page {p.page_number}\n\n{p.text}\n\n" for p in ordered)


def sanitize(text: str) -> str:
    """Удаляет все управляющие символы U+0000-U+001F."""
    return CONTROL_CHARS.sub("", text)


def encode_base64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def pdf_filename(original_name: str) -> str:
    """Имя PDF для скачивания: исходное имя с расширением .pdf."""
    stem = Path(original_name).stem or "document"
    return f"{stem}.pdf"


class DocumentPipeline:
    """
    Пайплайн обработки одного загруженного документа.

    Внешние операции (конвертер, шаг рендера, извлечение текста)
    внедряются через конструктор, по умолчанию используются
    LibreOffice, pdf2image и OpenAI.

    Attributes:
        registry: реестр задач на скачивание PDF
        max_pages: лимит страниц на документ
        concurrency: максимум одновременных вызовов извлечения
    """

    def __init__(
        self,
        registry: JobRegistry,
        extractor: TextExtractor,
        converter: Optional[Converter] = None,
        render_step: Optional[RenderStep] = None,
        max_pages: Optional[int] = None,
        concurrency: Optional[int] = None,
    ):
        self.registry = registry
        self._extractor = extractor
        self._converter = converter or convert_to_pdf
        self._render_step = render_step
        self.max_pages = max_pages or settings.max_pages
        self.concurrency = concurrency or settings.concurrency

    async def _ensure_pdf(self, source: SourceDocument, artifacts: ArtifactStore) -> Path:
        """
        Гарантирует наличие PDF для документа.

        Returns:
            Path: путь к PDF (сам исходник или результат конвертации)

        Raises:
            ConversionFailed: конвертер вернул ошибку или упал
        """
        if source.is_pdf:
            logger.info("Файл уже PDF, конвертация не нужна")
            return source.path

        try:
            result = await self._converter(source.path)
        except Exception as e:
            logger.exception(f"Конвертер упал: {e}")
            raise ConversionFailed("File conversion failed", detail=str(e)) from e

        if not result.ok:
            raise ConversionFailed("File conversion failed", detail=result.error)

        return artifacts.track(result.pdf_path)

    async def convert_only(self, source: SourceDocument) -> ConvertedDocument:
        """
        Вариант "только конвертация": вернуть PDF без регистрации задачи.

        Файлы из cleanup_paths должен удалить HTTP слой после отправки.

        Args:
            source: загруженный документ

        Returns:
            ConvertedDocument: путь к PDF, имя файла, что удалить после ответа

        Raises:
            ConversionFailed: при ошибке конвертации (артефакты уже удалены)
        """
        artifacts = ArtifactStore()
        artifacts.track(source.path)
        logger.info(f"Конвертация: {source.original_name}")

        try:
            pdf_path = await self._ensure_pdf(source, artifacts)
        except PipelineError:
            await artifacts.cleanup()
            raise

        filename = source.original_name if source.is_pdf else pdf_filename(source.original_name)
        logger.info(f"Конвертация успешна: {source.original_name} -> {filename}")

        return ConvertedDocument(
            pdf_path=pdf_path,
            filename=filename,
            cleanup_paths=artifacts.paths,
        )

    async def process(self, source: SourceDocument) -> ProcessResult:
        """
        Вариант "обработка": текст всех страниц + задача на скачивание PDF.

        Args:
            source: загруженный документ

        Returns:
            ProcessResult: markdown, base64 и job_id

        Raises:
            ConversionFailed, RasterizationFailed, ExtractionFailed:
                при ошибке соответствующего этапа (артефакты уже удалены)
        """
        total_start = time.perf_counter()
        artifacts = ArtifactStore()
        artifacts.track(source.path)

        logger.info("=" * 60)
        logger.info("НОВЫЙ ЗАПРОС /process")
        logger.info(f"   Файл: {source.original_name}")
        logger.info(f"   Лимит страниц: {self.max_pages}, параллельность: {self.concurrency}")
        logger.info("=" * 60)

        stage_error: type[PipelineError] = ConversionFailed
        try:
            # 1. EnsurePdf
            pdf_path = await self._ensure_pdf(source, artifacts)

            # 2-3. Rasterize + Extract: страницы уходят в пул по мере рендера
            stage_error = RasterizationFailed
            scratch_dir = artifacts.track(pdf_path.parent / uuid.uuid4().hex)
            await run_in_threadpool(scratch_dir.mkdir, parents=True, exist_ok=True)

            stage_error = ExtractionFailed
            extract_start = time.perf_counter()
            pages = iter_pages(pdf_path, self.max_pages, scratch_dir, self._render_step)
            pages_text = await extract_pages(pages, self._extractor, self.concurrency)
            extract_duration = int((time.perf_counter() - extract_start) * 1000)

            # 4. Assemble
            markdown = sanitize(assemble_markdown(pages_text))
        except PipelineError as e:
            logger.error(f"Обработка не удалась [{e.code}]: {e.message} ({e.detail})")
            await artifacts.cleanup()
            raise
        except Exception as e:
            logger.exception(f"Непредвиденная ошибка обработки: {e}")
            await artifacts.cleanup()
            raise stage_error("Processing failed", detail=str(e)) from e

        # 5. Finalize: PDF передаётся реестру, остальное удаляется
        display_name = pdf_filename(source.original_name)
        artifacts.release(pdf_path)
        job_id = self.registry.register(pdf_path, display_name)
        await artifacts.cleanup()

        total_duration = int((time.perf_counter() - total_start) * 1000)
        logger.info("=" * 60)
        logger.info("ОБРАБОТКА ЗАВЕРШЕНА")
        logger.info(f"   Файл: {source.original_name}")
        logger.info(f"   Страниц: {len(pages_text)}")
        logger.info(f"   Символов: {len(markdown)}")
        logger.info(f"   job_id: {job_id}")
        logger.info(f"   Рендер + извлечение: {extract_duration}ms")
        logger.info(f"   ИТОГО: {total_duration}ms")
        logger.info("=" * 60)

        return ProcessResult(
            job_id=job_id,
            original_name=display_name,
            markdown=markdown,
            markdown_base64=encode_base64(markdown),
            pages_count=len(pages_text),
        )
