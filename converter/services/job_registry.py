"""
In-memory реестр задач на скачивание PDF.

После успешного /process PDF не удаляется, а регистрируется здесь
под случайным UUID с TTL (по умолчанию 15 минут). Скачать его можно
ровно один раз: retrieve() атомарно убирает задачу из реестра,
и удаление файла после отправки — ответственность вызывающего.

Фоновая очистка раз в sweep_interval_seconds удаляет истёкшие задачи.
Задача всегда сначала удаляется из словаря (под блокировкой) и только
потом удаляется её файл, поэтому retrieve и очистка никогда не удаляют
один и тот же файл дважды.

Особенности:
    - Хранение в памяти (без персистентности, один процесс)
    - Часы внедряются через clock, чтобы тестировать истечение без ожидания
"""

import asyncio
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from starlette.concurrency import run_in_threadpool

from converter.config import settings
from converter.errors import JobNotFound
from converter.schemas import Job, JobInfo, JobStats
from converter.services.artifacts import remove_path

logger = logging.getLogger(__name__)


def _new_job_id() -> str:
    return str(uuid.uuid4())


class JobRegistry:
    """
    Реестр задач: job_id -> Job.

    Все изменения словаря выполняются под threading.Lock, так как
    методы вызываются и из event loop, и из threadpool.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = _new_job_id,
        remover: Callable[[Path], bool] = remove_path,
    ):
        self.ttl_seconds = ttl_seconds or settings.job_ttl_seconds
        self._clock = clock
        self._id_factory = id_factory
        self._remover = remover
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def register(self, pdf_path: Path, display_name: str) -> str:
        """
        Регистрирует PDF для однократного скачивания.

        Args:
            pdf_path: путь к PDF (владение переходит реестру)
            display_name: имя файла для скачивания

        Returns:
            str: job_id
        """
        now = self._clock()

        with self._lock:
            job_id = self._id_factory()
            while job_id in self._jobs:
                job_id = self._id_factory()

            self._jobs[job_id] = Job(
                job_id=job_id,
                pdf_path=Path(pdf_path),
                display_name=display_name,
                expires_at=now + self.ttl_seconds,
                created_at=now,
            )
            total = len(self._jobs)

        logger.info(
            f"Задача зарегистрирована: job_id={job_id}, файл={display_name}, "
            f"всего в реестре={total}"
        )
        return job_id

    def retrieve(self, job_id: str) -> Job:
        """
        Забирает задачу из реестра (не больше одного раза).

        После успешного вызова файл принадлежит вызывающему: он обязан
        удалить его после отправки, даже если отправка упала.
        Истёкшая, но ещё не очищенная задача считается отсутствующей,
        её файл удаляется сразу.

        Args:
            job_id: идентификатор задачи

        Returns:
            Job: данные задачи

        Raises:
            JobNotFound: задача неизвестна, истекла или уже скачана
        """
        now = self._clock()

        with self._lock:
            job = self._jobs.pop(job_id, None)

        if job is None:
            logger.warning(f"Задача не найдена: {job_id}")
            raise JobNotFound(job_id)

        if job.expires_at < now:
            logger.warning(f"Задача истекла до скачивания: {job_id}")
            self._remover(job.pdf_path)
            raise JobNotFound(job_id)

        logger.info(f"Задача выдана: {job_id}")
        return job

    def sweep(self, now: Optional[float] = None) -> int:
        """
        Удаляет истёкшие задачи и их файлы.

        Args:
            now: момент времени для сравнения (по умолчанию clock())

        Returns:
            int: количество удалённых задач
        """
        now = self._clock() if now is None else now

        with self._lock:
            expired = [job for job in self._jobs.values() if job.expires_at < now]
            for job in expired:
                del self._jobs[job.job_id]

        for job in expired:
            self._remover(job.pdf_path)
            logger.info(f"Задача истекла и удалена: {job.job_id}")

        return len(expired)

    def purge_all(self) -> int:
        """Удаляет все задачи и их файлы (при остановке сервиса)."""
        with self._lock:
            jobs, self._jobs = list(self._jobs.values()), {}

        for job in jobs:
            self._remover(job.pdf_path)

        if jobs:
            logger.info(f"Удалено задач при остановке: {len(jobs)}")
        return len(jobs)

    def stats(self) -> JobStats:
        """
        Возвращает статистику реестра.

        Returns:
            JobStats: количество задач, ближайшее и самое дальнее истечение
        """
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.expires_at)

        if not jobs:
            return JobStats(jobs_count=0)

        return JobStats(
            jobs_count=len(jobs),
            oldest_job=JobInfo(job_id=jobs[0].job_id, expires_at=jobs[0].expires_at),
            newest_job=JobInfo(job_id=jobs[-1].job_id, expires_at=jobs[-1].expires_at),
        )

    # ------------------------------------------------------------------
    # Фоновая очистка
    # ------------------------------------------------------------------

    async def run_sweeper(self, interval_seconds: Optional[float] = None) -> None:
        """Бесконечный цикл очистки, запускается как asyncio.Task."""
        interval = interval_seconds or settings.sweep_interval_seconds

        while True:
            await asyncio.sleep(interval)
            try:
                removed = await run_in_threadpool(self.sweep)
            except Exception as e:
                logger.exception(f"Ошибка фоновой очистки задач: {e}")
                continue
            if removed:
                logger.info(f"Фоновая очистка: удалено задач {removed}")

    def start_sweeper(self, interval_seconds: Optional[float] = None) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self.run_sweeper(interval_seconds))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
