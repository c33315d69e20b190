"""
Растеризация PDF постранично.

Использует pdf2image (pdftoppm) для рендеринга ОДНОЙ страницы за раз
в PNG, затем сразу сжимает её через Pillow и удаляет сырой рендер.
На диске одновременно лежит не больше одного несжатого изображения.

Каждый шаг возвращает тегированный результат:
    PageRendered  — страница готова
    EndOfDocument — страниц больше нет (или не удалось отрисовать k > 1)
    RenderFatal   — не удалось отрисовать первую страницу

Сбой на странице k > 1 считается концом документа и не является ошибкой.
Временный сбой посреди документа при этом молча обрежет результат —
поведение сохранено намеренно, такие случаи пишутся в лог как warning.
"""

import logging
import time
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from pdf2image import convert_from_path
from PIL import Image
from starlette.concurrency import run_in_threadpool

from converter.config import settings
from converter.errors import RasterizationFailed
from converter.schemas import (
    EndOfDocument,
    PageImage,
    PageRendered,
    RenderFatal,
    RenderOutcome,
)

logger = logging.getLogger(__name__)

RenderStep = Callable[[Path, int, Path], RenderOutcome]


def compress_image(raw_path: Path, max_width: int, compress_level: int) -> Path:
    """
    Сжимает PNG для более быстрой отправки в OpenAI.

    Уменьшает изображение до max_width по ширине (если оно шире)
    и пересохраняет PNG с оптимизацией. Сырой файл удаляется.

    Args:
        raw_path: путь к исходному PNG
        max_width: максимальная ширина в пикселях
        compress_level: уровень zlib сжатия (0-9)

    Returns:
        Path: путь к сжатому файлу (<stem>-cmp.png рядом с исходником)
    """
    compressed_path = raw_path.with_name(f"{raw_path.stem}-cmp.png")

    with Image.open(raw_path) as img:
        if img.width > max_width:
            ratio = max_width / img.width
            img = img.resize(
                (max_width, max(1, int(img.height * ratio))),
                Image.Resampling.LANCZOS,
            )
        img.save(
            compressed_path,
            format="PNG",
            optimize=True,
            compress_level=compress_level,
        )

    raw_path.unlink()
    return compressed_path


def render_page(
    pdf_path: Path,
    page_number: int,
    scratch_dir: Path,
    dpi: Optional[int] = None,
    width: Optional[int] = None,
    compress_level: Optional[int] = None,
) -> RenderOutcome:
    """
    Рендерит и сжимает одну страницу PDF.

    Args:
        pdf_path: путь к PDF
        page_number: номер страницы (с 1)
        scratch_dir: каталог для изображений текущего запуска
        dpi: разрешение рендера
        width: целевая ширина изображения
        compress_level: уровень сжатия PNG

    Returns:
        RenderOutcome: PageRendered | EndOfDocument | RenderFatal
    """
    dpi = dpi or settings.render_dpi
    width = width or settings.render_width
    if compress_level is None:
        compress_level = settings.compress_level

    try:
        paths = convert_from_path(
            str(pdf_path),
            dpi=dpi,
            first_page=page_number,
            last_page=page_number,
            fmt="png",
            output_folder=str(scratch_dir),
            output_file=f"page-{page_number:03d}",
            size=(width, None),
            paths_only=True,
        )
        if not paths:
            reason = "страница отсутствует"
        else:
            compressed = compress_image(Path(paths[0]), width, compress_level)
            page = PageImage(
                page_number=page_number,
                path=compressed,
                content=compressed.read_bytes(),
            )
            return PageRendered(page=page)
    except Exception as e:
        reason = str(e) or type(e).__name__

    if page_number == 1:
        return RenderFatal(page_number=page_number, reason=reason)
    return EndOfDocument(page_number=page_number, reason=reason)


async def iter_pages(
    pdf_path: Path,
    max_pages: int,
    scratch_dir: Path,
    render_step: Optional[RenderStep] = None,
) -> AsyncIterator[PageImage]:
    """
    Лениво отдаёт страницы PDF по одной, начиная с первой.

    Останавливается на max_pages или на первой странице, которую
    не удалось отрисовать. Рендер выполняется в threadpool,
    страницы отрисовываются строго последовательно.

    Args:
        pdf_path: путь к PDF
        max_pages: максимальное количество страниц
        scratch_dir: каталог для изображений (должен существовать)
        render_step: функция шага (по умолчанию render_page)

    Yields:
        PageImage: сжатая страница

    Raises:
        RasterizationFailed: если не удалось отрисовать первую страницу
    """
    step = render_step or render_page

    for page_number in range(1, max_pages + 1):
        start = time.perf_counter()
        outcome = await run_in_threadpool(step, pdf_path, page_number, scratch_dir)

        if isinstance(outcome, RenderFatal):
            logger.error(
                f"Не удалось отрисовать страницу {outcome.page_number}: {outcome.reason}"
            )
            raise RasterizationFailed(
                "Document could not be rasterized",
                detail=outcome.reason,
            )

        if isinstance(outcome, EndOfDocument):
            logger.warning(
                f"Конец документа на странице {outcome.page_number}"
                f" ({outcome.reason or 'нет данных'}), страниц: {page_number - 1}"
            )
            return

        duration = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"   стр.{page_number}: {len(outcome.page.content)} байт за {duration}ms"
        )
        yield outcome.page

    logger.info(f"Достигнут лимит страниц: {max_pages}")
