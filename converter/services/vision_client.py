"""
Извлечение текста из изображения страницы через OpenAI vision.

Клиент создаётся лениво при первом вызове: без OPENAI ключа сервис
стартует и умеет конвертировать, но /process вернёт ExtractionFailed.
"""

import base64
import logging
from typing import Optional

from openai import AsyncOpenAI

from converter.config import settings
from converter.errors import ExtractionFailed

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = (
    "Extract the visible text from this document page image. "
    "Return ONLY that text, no explanations."
)


class VisionExtractor:
    """
    Внешняя операция "текст из изображения".

    Экземпляр вызываемый: await extractor(image_bytes) -> str.

    Attributes:
        model: модель OpenAI с поддержкой изображений
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self._api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ExtractionFailed(
                    "Text extraction is not configured",
                    detail="CONVERTER_OPENAI_API_KEY env variable is required",
                )
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def __call__(self, image_bytes: bytes) -> str:
        """
        Отправляет PNG страницы в модель и возвращает распознанный текст.

        Args:
            image_bytes: содержимое PNG

        Returns:
            str: текст страницы без начальных/конечных пробелов
        """
        client = self._get_client()
        encoded = base64.b64encode(image_bytes).decode("ascii")

        response = await client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": EXTRACTION_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/png;base64,{encoded}"},
                        },
                    ],
                }
            ],
        )

        content = response.choices[0].message.content or ""
        return content.strip()
