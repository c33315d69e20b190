"""
Схемы данных PDF Converter Service.

Включает:
    - Pydantic модели для API (ответ /process, статистика задач)
    - Внутренние dataclass'ы для пайплайна обработки
    - Тегированные результаты шагов конвертации и растеризации
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Pydantic модели для API
# =============================================================================


class ProcessResponse(BaseModel):
    """
    Ответ /process: извлечённый текст и ссылка на скачивание PDF.

    Attributes:
        job_id: идентификатор задачи для скачивания PDF
        original_name: имя PDF файла, под которым он будет скачан
        markdown: текст всех страниц с заголовком на каждую страницу
        markdown_base64: тот же текст в base64 (UTF-8)
        download_url: одноразовая ссылка на скачивание PDF
    """

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    original_name: str = Field(alias="originalName")
    markdown: str
    markdown_base64: str = Field(alias="markdownBase64")
    download_url: str = Field(alias="downloadUrl")


class ErrorResponse(BaseModel):
    """
    Тело ответа при ошибке.

    Attributes:
        error: краткое описание
        code: категория ошибки (input_invalid, conversion_failed, ...)
        details: подробности
    """

    error: str
    code: str
    details: Optional[str] = None


class JobInfo(BaseModel):
    job_id: str
    expires_at: float


class JobStats(BaseModel):
    """
    Статистика реестра задач.

    Attributes:
        jobs_count: количество живых задач
        oldest_job: задача, которая истечёт первой
        newest_job: задача, которая истечёт последней
    """

    jobs_count: int
    oldest_job: Optional[JobInfo] = None
    newest_job: Optional[JobInfo] = None


# =============================================================================
# Внутренние dataclass'ы для пайплайна
# =============================================================================


@dataclass
class SourceDocument:
    """
    Загруженный документ.

    Attributes:
        path: путь к сохранённому файлу (случайное имя + исходное расширение)
        original_name: имя файла, которое прислал клиент
    """

    path: Path
    original_name: str

    @property
    def is_pdf(self) -> bool:
        return Path(self.original_name).suffix.lower() == ".pdf"


@dataclass
class PageImage:
    """
    Отрисованная и сжатая страница.

    Attributes:
        page_number: номер страницы (начинается с 1)
        path: путь к сжатому PNG внутри scratch-каталога
        content: байты сжатого PNG
    """

    page_number: int
    path: Path
    content: bytes


@dataclass
class PageText:
    """
    Текст одной страницы.

    Attributes:
        page_number: номер страницы
        text: сырой текст (может содержать управляющие символы)
    """

    page_number: int
    text: str


@dataclass
class Job:
    """
    Запись реестра: PDF, доступный для однократного скачивания.

    Attributes:
        job_id: случайный UUID
        pdf_path: путь к PDF
        display_name: имя файла для Content-Disposition
        expires_at: абсолютное время истечения (секунды, по часам реестра)
        created_at: время регистрации
    """

    job_id: str
    pdf_path: Path
    display_name: str
    expires_at: float
    created_at: float


@dataclass
class ConvertedDocument:
    """
    Результат варианта "только конвертация".

    Attributes:
        pdf_path: путь к PDF
        filename: предлагаемое имя для скачивания
        cleanup_paths: файлы, которые нужно удалить после отправки ответа
    """

    pdf_path: Path
    filename: str
    cleanup_paths: list[Path]


@dataclass
class ProcessResult:
    """
    Результат варианта "обработка": текст + зарегистрированная задача.
    """

    job_id: str
    original_name: str
    markdown: str
    markdown_base64: str
    pages_count: int


# =============================================================================
# Тегированные результаты внешних шагов
# =============================================================================


@dataclass
class ConversionResult:
    """
    Результат конвертации документа в PDF.

    Ровно одно из полей заполнено: pdf_path при успехе, error при сбое.
    """

    pdf_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.pdf_path is not None


@dataclass
class PageRendered:
    page: PageImage


@dataclass
class EndOfDocument:
    page_number: int
    reason: str = ""


@dataclass
class RenderFatal:
    page_number: int
    reason: str


RenderOutcome = Union[PageRendered, EndOfDocument, RenderFatal]
