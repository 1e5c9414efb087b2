"""
Generation configuration and image value objects.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class BackgroundMode(str, Enum):
    PURE_WHITE = "pure_white"
    NEUTRAL_GRAY = "neutral_gray"
    THEMED = "themed"
    AUTOMATIC = "automatic"

    @property
    def is_solid(self):
        return self in (BackgroundMode.PURE_WHITE, BackgroundMode.NEUTRAL_GRAY)


class LightingStyle(str, Enum):
    SHARP = "sharp"
    SOFT = "soft"


class AspectRatio(str, Enum):
    SQUARE = "1:1"
    PORTRAIT = "4:5"
    LANDSCAPE = "16:9"


class OutputSize(str, Enum):
    SIZE_2K = "2k"
    SIZE_4K = "4k"


class ProductView(str, Enum):
    ORIGINAL = "original"
    ENHANCED = "enhanced"


_ENUM_FIELDS = {
    "background_mode": BackgroundMode,
    "lighting_style": LightingStyle,
    "aspect_ratio": AspectRatio,
    "output_size": OutputSize,
    "product_view": ProductView,
}
_INTENSITY_FIELDS = ("product_separation", "background_blur")
_FLAG_FIELDS = ("add_reflection", "separate_products")


@dataclass(frozen=True)
class GenerationConfig:
    background_mode: BackgroundMode = BackgroundMode.PURE_WHITE
    background_keywords: str = ""
    lighting_style: LightingStyle = LightingStyle.SHARP
    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    output_size: OutputSize = OutputSize.SIZE_2K
    product_view: ProductView = ProductView.ORIGINAL
    add_reflection: bool = False
    separate_products: bool = False
    product_separation: int = 50
    background_blur: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        for name in _ENUM_FIELDS:
            data[name] = data[name].value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationConfig":
        config = cls()
        known = {f.name for f in dataclasses.fields(cls)}
        for name, value in (data or {}).items():
            if name in known:
                config = update_field(config, name, value)
        return config


def _coerce(name, value):
    if name in _ENUM_FIELDS:
        return _ENUM_FIELDS[name](value)
    if name in _INTENSITY_FIELDS:
        return max(0, min(100, int(value)))
    if name in _FLAG_FIELDS:
        return bool(value)
    if name == "background_keywords":
        return "" if value is None else str(value)
    raise AttributeError(f"GenerationConfig has no field '{name}'")


def update_field(config: GenerationConfig, name: str, value: Any) -> GenerationConfig:
    """Return a copy of ``config`` with one field replaced.

    Enum fields take members or raw values, intensities are clamped to 0-100.
    """
    return dataclasses.replace(config, **{name: _coerce(name, value)})


def separation_enabled(config: GenerationConfig, image_count: int) -> bool:
    # separation is only ever applied to several products on a solid background
    return image_count > 1 and config.background_mode.is_solid


def blur_enabled(config: GenerationConfig) -> bool:
    return not config.background_mode.is_solid


def reflection_enabled(config: GenerationConfig) -> bool:
    return config.background_mode.is_solid


@dataclass(frozen=True)
class SourceImage:
    data: bytes = field(repr=False)
    mime_type: str
    name: str

    @property
    def key(self):
        # dedup key: display name without its extension
        return self.name.split(".")[0]

