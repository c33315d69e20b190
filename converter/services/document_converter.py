"""
Конвертация офисных документов в PDF через LibreOffice (headless).

LibreOffice кладёт результат в outdir под именем <stem>.pdf.
Функция возвращает ConversionResult: путь к PDF или текст ошибки.
Проверка наличия выходного файла делается только здесь,
пайплайн ориентируется исключительно на возвращённый результат.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from converter.config import settings
from converter.schemas import ConversionResult

logger = logging.getLogger(__name__)


async def convert_to_pdf(
    input_path: Path,
    output_dir: Optional[Path] = None,
    libreoffice_bin: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
) -> ConversionResult:
    """
    Конвертирует документ в PDF.

    Args:
        input_path: путь к исходному документу
        output_dir: каталог для PDF (по умолчанию рядом с исходником)
        libreoffice_bin: исполняемый файл LibreOffice
        timeout_seconds: максимальное время конвертации

    Returns:
        ConversionResult: pdf_path при успехе, error при сбое
    """
    input_path = Path(input_path)
    output_dir = Path(output_dir or input_path.parent)
    binary = libreoffice_bin or settings.libreoffice_bin
    timeout = timeout_seconds or settings.conversion_timeout_seconds

    command = [
        binary,
        "--headless",
        "--convert-to",
        "pdf",
        "--outdir",
        str(output_dir),
        str(input_path),
    ]
    logger.info(f"Конвертация: {input_path.name} -> PDF")
    start = time.perf_counter()

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error(f"LibreOffice не запустился: {e}")
        return ConversionResult(error=f"LibreOffice is not available: {e}")

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.error(f"LibreOffice не уложился в {timeout} сек")
        return ConversionResult(error=f"Conversion timed out after {timeout}s")

    if process.returncode != 0:
        message = (stderr or stdout).decode(errors="replace").strip()
        logger.error(f"Ошибка LibreOffice (код {process.returncode}): {message}")
        return ConversionResult(error="Conversion failed")

    logger.debug(f"LibreOffice stdout: {stdout.decode(errors='replace')}")

    pdf_path = output_dir / f"{input_path.stem}.pdf"
    if not pdf_path.exists():
        logger.error(f"LibreOffice не создал файл: {pdf_path}")
        return ConversionResult(error="PDF not generated")

    duration = int((time.perf_counter() - start) * 1000)
    logger.info(f"Конвертация завершена: {pdf_path.name} за {duration}ms")
    return ConversionResult(pdf_path=pdf_path)
