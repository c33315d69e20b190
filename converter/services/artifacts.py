"""
Учёт временных файлов запроса.

Каждый этап пайплайна регистрирует созданные файлы и каталоги
в ArtifactStore, а в конце запроса (успех или ошибка) всё
зарегистрированное удаляется. PDF, переданный в реестр задач,
снимается с учёта через release() и дальше живёт по правилам реестра.

Ошибки удаления логируются и проглатываются: они не должны
подменять исходную ошибку, которую видит клиент.
"""

import logging
import shutil
from pathlib import Path
from typing import Iterable, Union

from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def remove_path(path: PathLike) -> bool:
    """
    Удаляет файл или каталог, не выбрасывая исключений.

    Args:
        path: путь к файлу или каталогу

    Returns:
        bool: True если что-то было удалено
    """
    path = Path(path)
    try:
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
        else:
            return False
    except OSError as e:
        logger.warning(f"Не удалось удалить {path}: {e}")
        return False

    logger.info(f"Удалён: {path}")
    return True


def remove_paths(paths: Iterable[PathLike]) -> int:
    """Удаляет пути по порядку, возвращает количество удалённых."""
    return sum(1 for path in paths if remove_path(path))


class ArtifactStore:
    """
    Реестр временных артефактов одного запроса.

    Не разделяется между запросами, поэтому блокировки не нужны.
    """

    def __init__(self) -> None:
        self._paths: list[Path] = []

    def track(self, path: PathLike) -> Path:
        """
        Ставит путь на учёт. Повторная регистрация игнорируется.

        Returns:
            Path: тот же путь, для удобства цепочек
        """
        path = Path(path)
        if path not in self._paths:
            self._paths.append(path)
        return path

    def release(self, path: PathLike) -> Path:
        """
        Снимает путь с учёта без удаления (передача владения).

        Returns:
            Path: освобождённый путь
        """
        path = Path(path)
        if path in self._paths:
            self._paths.remove(path)
        return path

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    def __contains__(self, path: object) -> bool:
        return Path(path) in self._paths  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._paths)

    def cleanup_sync(self) -> int:
        """
        Удаляет все артефакты в обратном порядке регистрации.

        Повторный вызов ничего не делает: список очищается сразу.

        Returns:
            int: количество удалённых путей
        """
        paths, self._paths = list(reversed(self._paths)), []
        return remove_paths(paths)

    async def cleanup(self) -> int:
        """Асинхронная версия cleanup_sync (удаление в threadpool)."""
        paths, self._paths = list(reversed(self._paths)), []
        if not paths:
            return 0
        return await run_in_threadpool(remove_paths, paths)
