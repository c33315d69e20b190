"""
PDF Converter Service — FastAPI приложение.

Эндпоинты:
    GET  /                    — проверка, что сервер запущен
    GET  /health              — статус сервиса и конфигурация
    POST /upload              — документ -> PDF (возвращается сразу)
    POST /process             — документ -> текст страниц + ссылка на PDF
    GET  /download/{job_id}   — однократное скачивание PDF после /process
    GET  /jobs/stats          — статистика реестра задач

Запуск:
    uvicorn converter.main:app --host 0.0.0.0 --port 3000
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool
from starlette.types import Receive, Scope, Send

from converter.config import settings
from converter.errors import InputInvalid, JobNotFound, PipelineError
from converter.schemas import ErrorResponse, JobStats, ProcessResponse, SourceDocument
from converter.services.artifacts import remove_paths
from converter.services.extraction_pool import TextExtractor
from converter.services.job_registry import JobRegistry
from converter.services.pipeline import DocumentPipeline
from converter.services.vision_client import VisionExtractor

SERVICE_NAME = "pdf-converter-server"
VERSION = "1.0.0"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _configure_logging() -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [PDF-Converter] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )


# Настройка логгера
_configure_logging()
logger = logging.getLogger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ без \\uXXXX экранирования не-ASCII символов."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


class CleanupFileResponse(FileResponse):
    """
    FileResponse, который удаляет файлы после отправки.

    Удаление выполняется в finally: файлы удаляются и тогда,
    когда отправка оборвалась (клиент отключился, ошибка сокета).
    BackgroundTask в этом случае не запускается.
    """

    def __init__(self, path: Path, cleanup_paths: list[Path], **kwargs):
        super().__init__(path, **kwargs)
        self.cleanup_paths = list(cleanup_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await run_in_threadpool(remove_paths, self.cleanup_paths)


def create_app(
    registry: Optional[JobRegistry] = None,
    extractor: Optional[TextExtractor] = None,
    pipeline: Optional[DocumentPipeline] = None,
    upload_dir: Optional[Path] = None,
) -> FastAPI:
    """
    Создаёт FastAPI приложение.

    Зависимости можно передать явно (тесты), иначе они создаются
    в lifespan из настроек.

    Args:
        registry: реестр задач на скачивание
        extractor: операция "текст из изображения"
        pipeline: готовый пайплайн (перекрывает registry/extractor)
        upload_dir: каталог для загруженных файлов

    Returns:
        FastAPI: приложение
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.upload_dir = Path(upload_dir or settings.upload_dir)
        app.state.upload_dir.mkdir(parents=True, exist_ok=True)

        if pipeline is not None:
            app.state.pipeline = pipeline
        else:
            app.state.pipeline = DocumentPipeline(
                registry=registry if registry is not None else JobRegistry(),
                extractor=extractor or VisionExtractor(),
            )
        app.state.registry = app.state.pipeline.registry
        app.state.registry.start_sweeper()

        logger.info(f"Сервис запущен, каталог загрузок: {app.state.upload_dir}")
        yield

        await app.state.registry.stop_sweeper()
        await run_in_threadpool(app.state.registry.purge_all)
        logger.info("Сервис остановлен")

    app = FastAPI(
        title="PDF Converter Service",
        description="Конвертация документов в PDF и извлечение текста страниц",
        version=VERSION,
        default_response_class=UnicodeJSONResponse,
        lifespan=lifespan,
    )

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        return UnicodeJSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "PDF Converter Server is running"

    @app.get("/health")
    async def health_check(request: Request) -> dict:
        """
        Проверка работоспособности сервиса.

        Returns:
            dict: статус, время, конфигурация и количество задач
        """
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "version": VERSION,
            "config": {
                "max_file_size_mb": settings.max_file_size_mb,
                "max_pages": request.app.state.pipeline.max_pages,
                "concurrency": request.app.state.pipeline.concurrency,
                "render_dpi": settings.render_dpi,
                "openai_model": settings.openai_model,
                "job_ttl_seconds": request.app.state.registry.ttl_seconds,
            },
            "jobs": len(request.app.state.registry),
        }

    @app.post("/upload", responses=ERROR_RESPONSES)
    async def upload(
        request: Request,
        file: Optional[UploadFile] = File(default=None, description="Документ для конвертации"),
    ) -> CleanupFileResponse:
        """
        Конвертирует документ в PDF и сразу возвращает его.

        PDF отдаётся как есть. Все файлы удаляются после отправки ответа.

        Returns:
            CleanupFileResponse: PDF файл

        Raises:
            InputInvalid: файл не передан или слишком большой
            ConversionFailed: ошибка LibreOffice
        """
        source = await _save_upload(file, request.app.state.upload_dir)
        converted = await request.app.state.pipeline.convert_only(source)

        return CleanupFileResponse(
            converted.pdf_path,
            cleanup_paths=converted.cleanup_paths,
            media_type="application/pdf",
            filename=converted.filename,
        )

    @app.post("/process", response_model=ProcessResponse, responses=ERROR_RESPONSES)
    async def process(
        request: Request,
        file: Optional[UploadFile] = File(default=None, description="Документ для обработки"),
    ) -> ProcessResponse:
        """
        Извлекает текст всех страниц документа.

        PDF остаётся доступен по downloadUrl один раз в течение TTL.

        Returns:
            ProcessResponse: jobId, originalName, markdown, markdownBase64, downloadUrl

        Raises:
            InputInvalid, ConversionFailed, RasterizationFailed, ExtractionFailed
        """
        source = await _save_upload(file, request.app.state.upload_dir)
        result = await request.app.state.pipeline.process(source)
        logger.info(f"Готово: job_id={result.job_id}, страниц: {result.pages_count}")

        return ProcessResponse(
            job_id=result.job_id,
            original_name=result.original_name,
            markdown=result.markdown,
            markdown_base64=result.markdown_base64,
            download_url=str(request.url_for("download_job", job_id=result.job_id)),
        )

    @app.get(
        "/download/{job_id}",
        name="download_job",
        responses={404: {"model": ErrorResponse}},
    )
    async def download(request: Request, job_id: str) -> CleanupFileResponse:
        """
        Однократно отдаёт PDF задачи и удаляет его после отправки
        (в том числе если отправка оборвалась).

        Raises:
            JobNotFound: 404, если задача неизвестна, истекла или уже скачана
        """
        job = await run_in_threadpool(request.app.state.registry.retrieve, job_id)

        if not job.pdf_path.exists():
            logger.error(f"Файл задачи {job_id} пропал с диска: {job.pdf_path}")
            raise JobNotFound(job_id)

        logger.info(f"Скачивание: job_id={job_id}, файл={job.display_name}")
        return CleanupFileResponse(
            job.pdf_path,
            cleanup_paths=[job.pdf_path],
            media_type="application/pdf",
            filename=job.display_name,
        )

    @app.get("/jobs/stats", response_model=JobStats)
    async def jobs_stats(request: Request) -> JobStats:
        """Статистика реестра задач (для мониторинга)."""
        return request.app.state.registry.stats()

    return app


async def _save_upload(file: Optional[UploadFile], upload_dir: Path) -> SourceDocument:
    """
    Сохраняет загруженный файл под случайным именем.

    Расширение исходного файла сохраняется: по нему LibreOffice
    определяет формат, а пайплайн решает, нужна ли конвертация.

    Args:
        file: загруженный файл
        upload_dir: каталог загрузок

    Returns:
        SourceDocument: путь к сохранённому файлу и исходное имя

    Raises:
        InputInvalid: файл не передан (400) или превышен лимит размера (413)
    """
    if file is None or not file.filename:
        logger.warning("Файл не передан")
        raise InputInvalid("No file uploaded")

    file_bytes = await file.read()

    max_size = settings.max_file_size_mb * 1024 * 1024
    if len(file_bytes) > max_size:
        raise InputInvalid(
            "File too large",
            detail=f"{len(file_bytes)} bytes, limit {settings.max_file_size_mb} MB",
            http_status=413,
        )

    original_name = Path(file.filename).name
    path = upload_dir / f"{uuid.uuid4()}{Path(original_name).suffix}"
    await run_in_threadpool(path.write_bytes, file_bytes)

    logger.info(f"Получен файл: {original_name} ({len(file_bytes)} байт)")
    return SourceDocument(path=path, original_name=original_name)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск PDF Converter Service на {settings.host}:{settings.port}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )
