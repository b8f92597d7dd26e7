"""
exporter.py
Модуль экспорта готового стенсила в PNG / JPG.
"""
import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from config import StencilerConfig

log = logging.getLogger(__name__)

FORMATS = ("png", "jpg")


class StencilExporter:
    def __init__(self, config: StencilerConfig):
        self.cfg = config

    def make_transparent(self, rgba: np.ndarray) -> np.ndarray:
        """
        Почти белые пиксели (R,G,B строго > порога) -> alpha 0.
        Линии остаются непрозрачными, под термопринтер/оверлей.
        """
        out = rgba.copy()
        cutoff = self.cfg.EXPORT_ALPHA_CUTOFF
        near_white = np.all(out[..., :3] > cutoff, axis=-1)
        out[near_white, 3] = 0
        return out

    def flatten_on_white(self, rgba: np.ndarray) -> np.ndarray:
        """RGBA -> RGB поверх белого листа (у JPG нет альфы)."""
        alpha = rgba[..., 3:4].astype(np.float32) / 255.0
        rgb = rgba[..., :3].astype(np.float32) * alpha + 255.0 * (1.0 - alpha)
        return np.clip(np.rint(rgb), 0, 255).astype(np.uint8)

    def encode_png(self, rgba: np.ndarray, transparent: bool = False) -> bytes:
        if transparent:
            rgba = self.make_transparent(rgba)
        # OpenCV кодирует BGRA
        ok, buf = cv2.imencode(".png", cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA))
        if not ok:
            raise IOError("Не удалось закодировать PNG")
        return buf.tobytes()

    def encode_jpg(self, rgba: np.ndarray) -> bytes:
        rgb = self.flatten_on_white(rgba)
        ok, buf = cv2.imencode(".jpg", cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR),
                               [cv2.IMWRITE_JPEG_QUALITY, self.cfg.JPEG_QUALITY])
        if not ok:
            raise IOError("Не удалось закодировать JPG")
        return buf.tobytes()

    def save(self, rgba: np.ndarray, output_path: Union[str, Path], transparent: bool = False,
             fmt: str = "png") -> Path:
        if fmt not in FORMATS:
            raise ValueError(f"Неизвестный формат {fmt!r}. Доступны: {', '.join(FORMATS)}")
        output_path = Path(output_path).with_suffix("." + fmt)
        if fmt == "jpg":
            if transparent:
                log.warning("JPG не поддерживает прозрачность, фон будет белым: %s", output_path)
            data = self.encode_jpg(rgba)
        else:
            data = self.encode_png(rgba, transparent=transparent)
        output_path.write_bytes(data)
        log.debug("saved %s (%d bytes, transparent=%s)", output_path, len(data), transparent)
        return output_path

    def process_and_save(self, rgba: np.ndarray, output_path: Union[str, Path], transparent: bool = False,
                         fmt: str = "png") -> int:
        """Сохраняет стенсил, возвращает число пикселей-линий (не белых)."""
        self.save(rgba, output_path, transparent=transparent, fmt=fmt)
        return int(np.count_nonzero(np.any(rgba[..., :3] != 255, axis=-1)))
