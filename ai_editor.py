"""
ai_editor.py
Клиент генеративного сервиса (Gemini) для AI-пресетов: clean / stencil / flatten.
Ядро конвейера этот модуль не импортирует и работает без него (офлайн, тесты).
"""
import base64
import binascii
import logging
import os
import re
from typing import Optional, Union

from config import StencilerConfig

log = logging.getLogger(__name__)

PROMPTS = {
    "clean": """
    Redraw this image as a high-quality professional tattoo stencil.
    Strict Requirements:
    1. Output PURE BLACK lines on a solid WHITE background only.
    2. Remove ALL shading, gradients, shadows, texturing, and noise.
    3. Consolidate sketchy, fuzzy, or double lines into single, confident, smooth vector-style lines.
    4. Ensure line weight is consistent, clean, and appropriate for a thermal transfer machine.
    5. Maintain all essential details of the subject but simplify complex areas for tattooing.
    6. The result must look like a perfect line drawing done by a master tattoo artist.
    """,
    "stencil": """
    Convert the provided image into professional tattoo lineart.
    Produce clean, solid, precise lineart as a professional tattoo artist would:
    - Strong, continuous main outlines
    - Clear, uniform, closed inner lines
    - Consistent line weight and direction
    Turn color shading into tattoo guide shading:
    - Use ghost lines for soft shadows
    - Translate hard shadows into blocks of line shading
    - Keep proportions and expression faithful to the original design
    Do not add new elements or restyle. Output lineart plus guide shading, no background.
    """,
    "flatten": """
    Extract only the tattoo design from the provided image.
    Correct all distortion caused by body curvature, perspective, lighting or motion.
    Straighten and restructure the design so it is completely flat and centered.
    Clean the lines without changing the original style: keep thickness, curves, tips and exact shapes.
    Remove all noise, shadows, skin, texture, color and background.
    Deliver 100% crisp, uniform, solid lineart with no fill and no dirty stencil effect.
    Do not add details or change the composition; only correct, clean and tidy.
    """,
}

_DATA_URL_RE = re.compile(r"^data:image/(png|jpeg|jpg|webp);base64,", re.IGNORECASE)


class GenerativeServiceError(RuntimeError):
    """Сервис недоступен, вернул ошибку или не вернул изображение."""


def strip_data_url(data: str) -> str:
    """Убирает заголовок data:image/...;base64, если он есть."""
    return _DATA_URL_RE.sub("", data.strip(), count=1)


def to_png_bytes(image: Union[bytes, str]) -> bytes:
    """Принимает байты PNG или base64 (с data-URL заголовком или без)."""
    if isinstance(image, (bytes, bytearray)):
        return bytes(image)
    try:
        return base64.b64decode(strip_data_url(image), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Некорректный base64: {e}") from e


class GenerativeEditor:
    def __init__(self, config: StencilerConfig, client=None, api_key: Optional[str] = None):
        self.cfg = config
        self._client = client
        self._api_key = api_key

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            from google import genai
        except ImportError as e:
            raise ImportError("Critical: google-genai не найден. Установите extra: pip install .[ai]") from e

        key = (self._api_key
               or os.environ.get(self.cfg.API_KEY_ENV)
               or os.environ.get(self.cfg.API_KEY_FALLBACK_ENV))
        if not key:
            raise GenerativeServiceError(
                f"Нет API-ключа: задайте {self.cfg.API_KEY_ENV} или {self.cfg.API_KEY_FALLBACK_ENV}")
        self._client = genai.Client(api_key=key)
        return self._client

    def _build_contents(self, png: bytes, prompt: str):
        from google.genai import types
        return [types.Part.from_bytes(data=png, mime_type="image/png"), prompt]

    def edit(self, image: Union[bytes, str], prompt: str) -> bytes:
        """
        Отправляет изображение + текстовую инструкцию, возвращает PNG-байты.
        Любая ошибка SDK заворачивается в GenerativeServiceError.
        """
        png = to_png_bytes(image)
        client = self._get_client()
        contents = self._build_contents(png, prompt)
        try:
            response = client.models.generate_content(model=self.cfg.AI_MODEL, contents=contents)
        except Exception as e:
            log.warning("generative service call failed: %s", e)
            raise GenerativeServiceError(f"Ошибка генеративного сервиса: {e}") from e

        data = _first_image(response)
        if data is None:
            raise GenerativeServiceError("Сервис не вернул изображение.")
        return data

    def apply_preset(self, image: Union[bytes, str], preset: str) -> bytes:
        if preset not in PROMPTS:
            raise KeyError(f"Неизвестный AI-пресет {preset!r}. Доступны: {', '.join(PROMPTS)}")
        return self.edit(image, PROMPTS[preset])


def _first_image(response) -> Optional[bytes]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            # SDK отдаёт bytes; старые версии - base64-строку
            if isinstance(inline.data, str):
                return base64.b64decode(inline.data)
            return bytes(inline.data)
    return None
