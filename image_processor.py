"""
image_processor.py
Модуль обработки изображений: фото -> двухцветный стенсил для переводки тату.
Pipeline: Contrast/Brightness + Luma -> Box Blur -> Sobel | Threshold -> Dilate -> Composite.

Каждая стадия - чистая функция: получает массив, возвращает НОВЫЙ массив.
Входные буферы никогда не модифицируются.
"""
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Union

import cv2
import numpy as np

from config import Mode, StencilerConfig, StencilSettings

log = logging.getLogger(__name__)

LUMA_WEIGHTS = (0.299, 0.587, 0.114)
DARK_LUMA_CUTOFF = 128.0
WHITE = (255, 255, 255)


def ensure_rgba(img: np.ndarray) -> np.ndarray:
    """Приводит HxW / HxWx3 / HxWx4 uint8 к HxWx4 (RGBA, alpha=255 при добавлении)."""
    img = np.asarray(img)
    if img.dtype != np.uint8:
        raise ValueError(f"Ожидается uint8, получено {img.dtype}")
    if img.ndim == 2:
        img = np.dstack([img, img, img])
    if img.ndim != 3 or img.shape[2] not in (3, 4):
        raise ValueError(f"Неподдерживаемая форма изображения: {img.shape}")
    if img.shape[2] == 3:
        alpha = np.full(img.shape[:2] + (1,), 255, dtype=np.uint8)
        img = np.concatenate([img, alpha], axis=2)
    return img


# ============================ 1. LUMA NORMALIZER ============================

def normalize_luma(rgba: np.ndarray, contrast: float, brightness: float) -> np.ndarray:
    """
    Контраст/яркость по каждому каналу R,G,B, затем взвешенная сумма в яркость.
    Альфа игнорируется (считаем изображение непрозрачным).
    """
    if contrast >= 259:
        # Полюс формулы: знаменатель 255 * (259 - contrast) обращается в ноль
        raise ValueError(f"contrast должен быть < 259, получено {contrast}")
    factor = (259.0 * (contrast + 255.0)) / (255.0 * (259.0 - contrast))

    rgb = rgba[..., :3].astype(np.float32)
    rgb = np.clip(factor * (rgb - 128.0) + 128.0 + brightness, 0.0, 255.0)

    wr, wg, wb = LUMA_WEIGHTS
    gray = wr * rgb[..., 0] + wg * rgb[..., 1] + wb * rgb[..., 2]
    return gray.astype(np.float32)


# ============================ 2. SMOOTHER ============================

def smooth(gray: np.ndarray, radius: int) -> np.ndarray:
    """
    Box blur окном (2r+1)x(2r+1). Среднее только по пикселям внутри кадра:
    у краёв окно усечено, паддинга и отражения нет.
    """
    if radius <= 0:
        return gray.copy()

    h, w = gray.shape
    # Таблица сумм (integral image) размера (h+1, w+1): окно = 4 обращения
    sat = cv2.integral(gray.astype(np.float64), sdepth=cv2.CV_64F)

    ys = np.arange(h)
    xs = np.arange(w)
    y0 = np.clip(ys - radius, 0, h)
    y1 = np.clip(ys + radius + 1, 0, h)
    x0 = np.clip(xs - radius, 0, w)
    x1 = np.clip(xs + radius + 1, 0, w)

    total = (sat[np.ix_(y1, x1)] - sat[np.ix_(y0, x1)]
             - sat[np.ix_(y1, x0)] + sat[np.ix_(y0, x0)])
    count = np.outer(y1 - y0, x1 - x0)
    return (total / count).astype(np.float32)


# ============================ 3. STRUCTURE EXTRACTOR ============================

def sobel_magnitude(gray: np.ndarray, edge_intensity: float) -> np.ndarray:
    """
    Магнитуда градиента Собеля (стандартные ядра 3x3), умноженная на edge_intensity/20.
    Первая/последняя строка и колонка остаются нулями: соседей за кадром не бывает.
    """
    h, w = gray.shape
    magnitude = np.zeros((h, w), dtype=np.float32)
    if h < 3 or w < 3:
        return magnitude

    src = np.ascontiguousarray(gray, dtype=np.float32)
    gx = cv2.Sobel(src, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(src, cv2.CV_32F, 0, 1, ksize=3)

    # Внутренние пиксели не зависят от режима границы OpenCV
    inner = cv2.magnitude(gx, gy)[1:-1, 1:-1]
    magnitude[1:-1, 1:-1] = inner * (edge_intensity / 20.0)
    return magnitude


# ============================ 4. THICKENER ============================

def dilate(buffer: np.ndarray, thickness: float) -> np.ndarray:
    """
    Полутоновая дилатация: максимум по квадрату радиуса floor(thickness/2).
    Пиксели за кадром исключаются из окна (а не считаются нулями).
    """
    if thickness <= 1:
        return buffer.copy()
    radius = int(thickness // 2)
    if radius < 1:
        return buffer.copy()

    kernel = np.ones((2 * radius + 1, 2 * radius + 1), dtype=np.uint8)
    # BORDER_CONSTANT со значением по умолчанию = -inf для dilate
    return cv2.dilate(buffer, kernel, borderType=cv2.BORDER_CONSTANT)


# ============================ 5. COMPOSITOR ============================

def edge_mask(gray: np.ndarray, settings: StencilSettings) -> np.ndarray:
    """Линия там, где утолщённая магнитуда строго выше порога."""
    magnitude = sobel_magnitude(gray, settings.edge_intensity)
    thick = dilate(magnitude, settings.thickness)
    return thick > settings.threshold_value


def threshold_mask(gray: np.ndarray, settings: StencilSettings) -> np.ndarray:
    """Линия там, где яркость строго ниже порога (тёмное = линия)."""
    return gray < settings.threshold_value


def mixed_mask(gray: np.ndarray, settings: StencilSettings) -> np.ndarray:
    """
    EDGE OR (яркость < 128). Дилатация касается только градиентной части,
    тёмные области захватываются как есть.
    """
    return edge_mask(gray, settings) | (gray < DARK_LUMA_CUTOFF)


MASK_STRATEGIES: Dict[Mode, Callable[[np.ndarray, StencilSettings], np.ndarray]] = {
    Mode.EDGE: edge_mask,
    Mode.THRESHOLD: threshold_mask,
    Mode.MIXED: mixed_mask,
}


def composite(mask: np.ndarray, line_color, flip_x: bool = False) -> np.ndarray:
    """Линия -> line_color, фон -> белый. Альфа всегда 255. Опционально зеркало по X."""
    h, w = mask.shape
    out = np.empty((h, w, 4), dtype=np.uint8)
    out[..., :3] = WHITE
    out[..., 3] = 255
    out[mask, :3] = np.asarray(line_color, dtype=np.uint8)
    if flip_x:
        out = np.ascontiguousarray(out[:, ::-1])
    return out


def process_stencil(image: np.ndarray, settings: StencilSettings) -> np.ndarray:
    """
    Чистая функция (RGBA, настройки) -> RGBA того же размера.
    Настройки зажимаются в допустимые диапазоны ДО входа в стадии.
    """
    rgba = ensure_rgba(image)
    s = settings.clamped()
    h, w = rgba.shape[:2]
    if h == 0 or w == 0:
        return np.zeros((h, w, 4), dtype=np.uint8)

    t0 = time.perf_counter()
    gray = normalize_luma(rgba, s.contrast, s.brightness)
    gray = smooth(gray, s.blur_radius)
    mask = MASK_STRATEGIES[s.mode](gray, s)
    if s.invert:
        mask = ~mask
    out = composite(mask, s.line_color, s.flip_x)

    log.debug("stencil %dx%d mode=%s lines=%d (%.1f ms)",
              w, h, s.mode.value, int(mask.sum()), (time.perf_counter() - t0) * 1000)
    return out


def fit_to_max_dim(image: np.ndarray, max_dim: int) -> np.ndarray:
    """Уменьшает изображение так, чтобы большая сторона была <= max_dim. Пропорции сохраняются."""
    h, w = image.shape[:2]
    if h == 0 or w == 0 or (w <= max_dim and h <= max_dim):
        return image
    ratio = min(max_dim / w, max_dim / h)
    new_w = max(1, int(round(w * ratio)))
    new_h = max(1, int(round(h * ratio)))
    log.debug("downscale %dx%d -> %dx%d", w, h, new_w, new_h)
    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)


def _to_rgba(decoded: np.ndarray) -> np.ndarray:
    # 16-битные PNG/TIFF -> 8 бит
    if decoded.dtype == np.uint16:
        decoded = (decoded // 257).astype(np.uint8)
    if decoded.ndim == 2:
        return cv2.cvtColor(decoded, cv2.COLOR_GRAY2RGBA)
    if decoded.shape[2] == 4:
        return cv2.cvtColor(decoded, cv2.COLOR_BGRA2RGBA)
    return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGBA)


class ImageProcessor:
    def __init__(self, config: StencilerConfig):
        self.cfg = config

    def load_image(self, path: Union[str, Path]) -> np.ndarray:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Файл не найден: {path}")
        # imdecode вместо imread: корректно работает с не-ASCII путями
        img = self.decode_image(path.read_bytes())
        if img is None:
            raise FileNotFoundError(f"Не удалось декодировать: {path}")
        return img

    def decode_image(self, data: bytes):
        """Байты PNG/JPG/... -> RGBA или None, если OpenCV не смог декодировать."""
        buf = np.frombuffer(data, dtype=np.uint8)
        if buf.size == 0:
            return None
        decoded = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
        if decoded is None:
            return None
        return _to_rgba(decoded)

    def prepare(self, rgba: np.ndarray) -> np.ndarray:
        """Ограничение размера перед конвейером (латентность O(W*H*K))."""
        return fit_to_max_dim(rgba, self.cfg.MAX_DIM)

    def process(self, rgba: np.ndarray, settings: StencilSettings) -> np.ndarray:
        return process_stencil(rgba, settings)
