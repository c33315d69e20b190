"""
Общие фикстуры тестов.

Переменные окружения выставляются до импорта пакета converter,
чтобы настройки не писали лог в файл и не трогали рабочие каталоги.
"""

import asyncio
import os
from pathlib import Path

import pytest

os.environ.setdefault("CONVERTER_LOG_FILE", "")
os.environ.setdefault("CONVERTER_OPENAI_API_KEY", "")

from converter.schemas import (  # noqa: E402
    ConversionResult,
    EndOfDocument,
    PageImage,
    PageRendered,
    RenderFatal,
)
from converter.services.job_registry import JobRegistry  # noqa: E402


class FakeClock:
    """Управляемые часы для реестра задач."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_render_step(total_pages: int, fail_on: int = None):
    """
    Шаг рендера без pdf2image: пишет в scratch-каталог маленький файл
    на страницу, содержимое файла кодирует номер страницы.

    Args:
        total_pages: сколько страниц "в документе"
        fail_on: номер страницы, на которой рендер падает
    """

    def render_step(pdf_path: Path, page_number: int, scratch_dir: Path):
        if page_number == fail_on or page_number > total_pages:
            reason = "render error" if page_number == fail_on else "no such page"
            if page_number == 1:
                return RenderFatal(page_number=page_number, reason=reason)
            return EndOfDocument(page_number=page_number, reason=reason)

        path = scratch_dir / f"page-{page_number:03d}-cmp.png"
        content = f"page-{page_number}".encode()
        path.write_bytes(content)
        return PageRendered(
            page=PageImage(page_number=page_number, path=path, content=content)
        )

    return render_step


def page_number_of(image_bytes: bytes) -> int:
    return int(image_bytes.decode().split("-")[1])


async def stub_extractor(image_bytes: bytes) -> str:
    return f"Page {page_number_of(image_bytes)} text"


def make_reverse_latency_extractor(total_pages: int, step: float = 0.01):
    """Извлечение, где первая страница отвечает последней."""

    async def extractor(image_bytes: bytes) -> str:
        page_number = page_number_of(image_bytes)
        await asyncio.sleep((total_pages - page_number + 1) * step)
        return f"Page {page_number} text"

    return extractor


def make_fake_converter(fail: bool = False):
    """Конвертер без LibreOffice: пишет минимальный PDF рядом с исходником."""

    async def converter(input_path: Path) -> ConversionResult:
        if fail:
            return ConversionResult(error="Conversion failed")
        pdf_path = input_path.with_suffix(".pdf")
        pdf_path.write_bytes(b"%PDF-1.4\n%converted\n")
        return ConversionResult(pdf_path=pdf_path)

    return converter


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock) -> JobRegistry:
    return JobRegistry(ttl_seconds=15 * 60, clock=clock)


@pytest.fixture
def upload_dir(tmp_path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


def residual_files(directory: Path) -> list[Path]:
    return sorted(p for p in directory.rglob("*"))
