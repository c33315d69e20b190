"""
Конфигурация PDF Converter Service.

Все значения читаются из .env файла (или переменных окружения).
Для всех параметров заданы дефолты, обязателен только ключ OpenAI
(и то лишь для эндпоинта /process).

Единый префикс: CONVERTER_
Документация по параметрам: .env.example
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки PDF Converter Service.

    Читает переменные с префиксом CONVERTER_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONVERTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 3000

    # --- Загрузка файлов ---
    # Каталог для загруженных файлов, сконвертированных PDF и картинок страниц
    upload_dir: str = "uploads"
    max_file_size_mb: int = 50

    # --- Конвертация: документ -> PDF (LibreOffice) ---
    libreoffice_bin: str = "libreoffice"
    conversion_timeout_seconds: float = 120.0

    # --- Растеризация: PDF -> PNG ---
    # Страховочный лимит страниц (в проде переопределяется на 10)
    max_pages: int = 20
    render_dpi: int = 200
    # ~A4 при 200 dpi
    render_width: int = 1654
    # zlib уровень сжатия PNG (0-9)
    compress_level: int = 9

    # --- Извлечение текста: OpenAI vision ---
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4.1-nano"
    # Сколько запросов к OpenAI одновременно
    concurrency: int = 5

    # --- Задачи на скачивание PDF ---
    job_ttl_seconds: float = 15 * 60
    sweep_interval_seconds: float = 60.0

    # --- Логирование ---
    log_level: str = "INFO"
    # Пустая строка отключает запись в файл
    log_file: str = "server.log"


# Глобальный экземпляр настроек
settings = Settings()
