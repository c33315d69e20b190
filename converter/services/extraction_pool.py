"""
Ограниченный по параллельности пул извлечения текста.

run_bounded — обобщённый пул: запускает работу по мере поступления
элементов, держит не больше limit одновременных вызовов
(asyncio.Semaphore), помечает результаты исходным индексом
и сортирует по нему перед возвратом.

extract_pages — применение пула к страницам: по одному вызову
извлечения на страницу. Ошибка любой страницы валит весь этап,
оставшиеся задачи отменяются, частичных результатов нет.
"""

import asyncio
import logging
import time
from typing import (
    AsyncIterable,
    Awaitable,
    Callable,
    Iterable,
    Optional,
    TypeVar,
    Union,
)

from converter.config import settings
from converter.errors import ExtractionFailed
from converter.schemas import PageImage, PageText

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

TextExtractor = Callable[[bytes], Awaitable[str]]


async def _aenumerate(items: Union[Iterable[T], AsyncIterable[T]]):
    index = 0
    if hasattr(items, "__aiter__"):
        async for item in items:  # type: ignore[union-attr]
            yield index, item
            index += 1
    else:
        for item in items:  # type: ignore[union-attr]
            yield index, item
            index += 1


async def run_bounded(
    items: Union[Iterable[T], AsyncIterable[T]],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[R]:
    """
    Выполняет worker для каждого элемента, не больше limit одновременно.

    Задача создаётся сразу, как только элемент получен из items,
    поэтому работа начинается до того, как источник исчерпан.
    После первой ошибки worker'а новые элементы из items не запрашиваются.

    Args:
        items: синхронный или асинхронный источник элементов
        worker: корутина обработки одного элемента
        limit: максимум одновременно выполняющихся вызовов worker

    Returns:
        list: результаты в порядке элементов источника

    Raises:
        Exception: первая ошибка worker'а или источника;
            незавершённые задачи при этом отменяются
    """
    if limit < 1:
        raise ValueError(f"limit должен быть >= 1, получен {limit}")

    semaphore = asyncio.Semaphore(limit)
    tasks: list[asyncio.Task] = []
    failed = asyncio.Event()

    async def run_one(index: int, item: T) -> tuple[int, R]:
        async with semaphore:
            return index, await worker(item)

    def on_done(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            failed.set()

    source = _aenumerate(items)
    try:
        async for index, item in source:
            # После первой ошибки источник больше не читается
            if failed.is_set():
                break
            task = asyncio.ensure_future(run_one(index, item))
            task.add_done_callback(on_done)
            tasks.append(task)
        results = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await source.aclose()
        if hasattr(items, "aclose"):
            await items.aclose()  # type: ignore[union-attr]
        raise

    results.sort(key=lambda pair: pair[0])
    return [result for _, result in results]


async def extract_pages(
    pages: Union[Iterable[PageImage], AsyncIterable[PageImage]],
    extractor: TextExtractor,
    concurrency: Optional[int] = None,
) -> list[PageText]:
    """
    Извлекает текст всех страниц с ограничением параллельности.

    Args:
        pages: страницы от растеризатора
        extractor: внешняя операция "текст из изображения"
        concurrency: максимум одновременных вызовов extractor

    Returns:
        list[PageText]: тексты, отсортированные по номеру страницы

    Raises:
        ExtractionFailed: если хотя бы одна страница не обработана
        RasterizationFailed: пробрасывается из источника страниц
    """
    concurrency = concurrency or settings.concurrency

    async def extract_one(page: PageImage) -> PageText:
        start = time.perf_counter()
        try:
            text = await extractor(page.content)
        except ExtractionFailed:
            raise
        except Exception as e:
            logger.error(f"Ошибка извлечения текста стр.{page.page_number}: {e}")
            raise ExtractionFailed(
                "Text extraction failed",
                detail=f"page {page.page_number}: {e}",
            ) from e

        duration = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"   стр.{page.page_number}: {len(text)} симв. за {duration}ms"
        )
        return PageText(page_number=page.page_number, text=text)

    pages_text = await run_bounded(pages, extract_one, concurrency)
    pages_text.sort(key=lambda p: p.page_number)
    return pages_text
