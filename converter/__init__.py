"""
PDF Converter Service — документ -> PDF -> текст страниц.

Принимает офисный документ, гарантирует его PDF-версию,
растеризует страницы и извлекает текст через OpenAI vision:
    - FastAPI эндпоинты (/upload, /process, /download/{job_id})
    - Пайплайн: ensure PDF -> rasterize -> extract -> assemble
    - In-memory реестр задач на однократное скачивание PDF с TTL
"""

from converter.config import settings
from converter.errors import (
    ConversionFailed,
    ExtractionFailed,
    InputInvalid,
    JobNotFound,
    PipelineError,
    RasterizationFailed,
)
from converter.schemas import PageText, ProcessResponse

__all__ = [
    "settings",
    "PipelineError",
    "InputInvalid",
    "ConversionFailed",
    "RasterizationFailed",
    "ExtractionFailed",
    "JobNotFound",
    "PageText",
    "ProcessResponse",
]
