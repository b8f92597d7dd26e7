"""
config.py
Централизованное хранилище настроек приложения.
Параметры стенсила (на один вызов) + константы приложения + пресеты.
"""
import math
import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Dict, Tuple

RGB = Tuple[int, int, int]


class Mode(str, Enum):
    """Стратегия выделения структуры."""
    EDGE = "edge"            # Собель -> порог по магнитуде
    THRESHOLD = "threshold"  # Прямой порог по яркости (тёмное = линия)
    MIXED = "mixed"          # EDGE OR (яркость < 128)


@dataclass
class StencilerConfig:
    # --- 1. ОГРАНИЧЕНИЕ РАЗМЕРА ---
    # Дилатация и блюр стоят O(W*H*K), поэтому большие фото уменьшаем заранее.
    MAX_DIM: int = 2048

    # --- 2. ЭКСПОРТ ---
    # Пиксели, у которых R,G,B строго больше порога, становятся прозрачными.
    EXPORT_ALPHA_CUTOFF: int = 250
    OUTPUT_SUFFIX: str = "_stencil"
    JPEG_QUALITY: int = 90
    IMAGE_EXTENSIONS: Tuple[str, ...] = ("jpg", "jpeg", "png", "bmp", "webp")

    # --- 3. ГЕНЕРАТИВНЫЙ СЕРВИС (опционально) ---
    AI_MODEL: str = "gemini-2.5-flash-image"
    API_KEY_ENV: str = "API_KEY"
    API_KEY_FALLBACK_ENV: str = "GEMINI_API_KEY"


# Допустимые диапазоны числовых параметров (включительно)
RANGES: Dict[str, Tuple[float, float]] = {
    "contrast": (-100, 100),
    "brightness": (-100, 100),
    "edge_intensity": (0, 200),
    "thickness": (1, 10),
    "detail": (0, 100),
    "smoothing": (0, 10),
}


def _clamp(value, lo, hi):
    return max(lo, min(hi, value))


@dataclass(frozen=True)
class StencilSettings:
    """
    Параметры одного вызова конвейера. Неизменяемы.
    Значения по умолчанию совпадают с исходным приложением.
    """
    contrast: float = 10           # [-100, 100]
    brightness: float = 0          # [-100, 100]
    edge_intensity: float = 80     # [0, 200], множитель магнитуды = /20
    thickness: float = 1           # [1, 10], радиус дилатации = floor(t/2)
    detail: float = 30             # [0, 100], порог = detail * 2.55
    smoothing: float = 2           # [0, 10], радиус блюра = floor(s)
    mode: Mode = Mode.EDGE
    invert: bool = False
    flip_x: bool = False
    line_color: RGB = field(default=(0, 0, 0))

    @property
    def threshold_value(self) -> float:
        return self.detail * 2.55

    @property
    def blur_radius(self) -> int:
        return int(math.floor(self.smoothing))

    @property
    def dilation_radius(self) -> int:
        if self.thickness <= 1:
            return 0
        return int(math.floor(self.thickness / 2))

    def clamped(self) -> "StencilSettings":
        """Возвращает копию, где каждое поле загнано в свой диапазон."""
        values = {}
        for f in fields(self):
            if f.name in RANGES:
                lo, hi = RANGES[f.name]
                raw = getattr(self, f.name)
                if isinstance(raw, float) and math.isnan(raw):
                    raw = getattr(DEFAULT_SETTINGS, f.name)
                values[f.name] = _clamp(raw, lo, hi)
        values["mode"] = Mode(self.mode)
        values["invert"] = bool(self.invert)
        values["flip_x"] = bool(self.flip_x)
        r, g, b = self.line_color
        values["line_color"] = tuple(int(_clamp(round(c), 0, 255)) for c in (r, g, b))
        return replace(self, **values)

    def with_preset(self, name: str) -> "StencilSettings":
        """Накладывает пресет поверх текущих значений (как в сайдбаре)."""
        return replace(self, **get_preset(name))

    @classmethod
    def from_preset(cls, name: str) -> "StencilSettings":
        return cls().with_preset(name)

    def as_lineart(self) -> "StencilSettings":
        """
        Настройки для уже готового лайнарта (ответ AI stencil/flatten):
        значения по умолчанию + порог 50 без блюра. Сохраняется только цвет линии.
        """
        return replace(StencilSettings(), mode=Mode.THRESHOLD, detail=50, smoothing=0,
                       line_color=self.line_color)


DEFAULT_SETTINGS = StencilSettings()

# Пресеты перезаписывают только перечисленные поля.
PRESETS: Dict[str, Dict[str, object]] = {
    "LINEART CLEAN PRO": dict(
        mode=Mode.EDGE, smoothing=1, detail=100, thickness=1,
        contrast=0, brightness=0, edge_intensity=50, invert=False,
    ),
    "REALISTIC PORTRAIT SOFT": dict(
        mode=Mode.MIXED, smoothing=5, detail=30, thickness=1.5,
        contrast=25, edge_intensity=90, invert=False,
    ),
    "TRADITIONAL BOLD STENCIL": dict(
        mode=Mode.THRESHOLD, smoothing=1, detail=60, thickness=4,
        contrast=40, edge_intensity=100, invert=False,
    ),
}


def get_preset(name: str) -> Dict[str, object]:
    key = name.strip().upper().replace("_", " ").replace("-", " ")
    if key not in PRESETS:
        raise KeyError(f"Неизвестный пресет {name!r}. Доступны: {', '.join(PRESETS)}")
    return dict(PRESETS[key])


_HEX_RE = re.compile(r"^#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)


def parse_hex_color(value: str) -> RGB:
    """'#RRGGBB' (решётка необязательна) -> (r, g, b)."""
    match = _HEX_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Некорректный цвет: {value!r} (ожидается #RRGGBB)")
    return tuple(int(part, 16) for part in match.groups())
