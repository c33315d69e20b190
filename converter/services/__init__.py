"""
Сервисы обработки документов.

Модули:
    - artifacts: учёт и удаление временных файлов запроса
    - document_converter: документ -> PDF (LibreOffice)
    - pdf_processor: постраничная растеризация PDF
    - extraction_pool: извлечение текста с ограничением параллельности
    - vision_client: извлечение текста из изображения (OpenAI)
    - pipeline: координация этапов обработки
    - job_registry: реестр задач на скачивание PDF
"""

from converter.services.artifacts import ArtifactStore, remove_path
from converter.services.document_converter import convert_to_pdf
from converter.services.extraction_pool import extract_pages, run_bounded
from converter.services.job_registry import JobRegistry
from converter.services.pdf_processor import iter_pages, render_page
from converter.services.pipeline import DocumentPipeline
from converter.services.vision_client import VisionExtractor

__all__ = [
    "ArtifactStore",
    "remove_path",
    "convert_to_pdf",
    "render_page",
    "iter_pages",
    "run_bounded",
    "extract_pages",
    "VisionExtractor",
    "DocumentPipeline",
    "JobRegistry",
]
