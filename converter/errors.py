"""
Иерархия ошибок пайплайна.

Каждый сбой классифицируется ровно в один вид, чтобы HTTP слой
мог одинаково отображать его в статус и тело ответа:

    InputInvalid        — файл не передан / слишком большой
    ConversionFailed    — LibreOffice упал или не создал PDF
    RasterizationFailed — не удалось отрисовать первую страницу
    ExtractionFailed    — ошибка извлечения текста хотя бы одной страницы
    JobNotFound         — неизвестный, истёкший или уже скачанный job_id
"""

from typing import Any, Optional


class PipelineError(Exception):
    """
    Базовая ошибка сервиса.

    Attributes:
        code: короткий код категории ("conversion_failed", ...)
        message: человекочитаемое описание
        detail: подробности (исходная ошибка, имя файла и т.д.)
        http_status: статус, который вернёт HTTP слой
    """

    code = "pipeline_error"
    http_status = 500

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail
        if http_status is not None:
            self.http_status = http_status

    def to_dict(self) -> dict[str, Any]:
        """
        Преобразует ошибку в тело JSON ответа.

        Returns:
            dict: {error, code, details}
        """
        return {
            "error": self.message,
            "code": self.code,
            "details": self.detail,
        }


class InputInvalid(PipelineError):
    code = "input_invalid"
    http_status = 400


class ConversionFailed(PipelineError):
    code = "conversion_failed"


class RasterizationFailed(PipelineError):
    code = "rasterization_failed"


class ExtractionFailed(PipelineError):
    code = "extraction_failed"


class JobNotFound(PipelineError):
    code = "job_not_found"
    http_status = 404

    def __init__(self, job_id: str):
        super().__init__(
            "Invalid or expired jobId",
            detail=f"job_id={job_id}",
        )
        self.job_id = job_id
