"""
Open Graph image
================
1200x630 share card with the shop name and description.
"""

import io
import logging
from functools import lru_cache

from PIL import Image, ImageDraw, ImageFont

from dongnegage.core.config import config

logger = logging.getLogger(__name__)

OG_SIZE = (1200, 630)
GRADIENT_FROM = (0x1c, 0x19, 0x17)
GRADIENT_TO = (0x44, 0x40, 0x3c)
DESCRIPTION_COLOR = (0xa8, 0xa2, 0x9e)
FOOTER_COLOR = (0x78, 0x71, 0x6c)
FOOTER_TEXT = "동네 가게 · 예약 서비스"


@lru_cache(maxsize=8)
def _font(size: int):
    # Hangul needs a CJK font; without OG_FONT_PATH glyphs may render as boxes
    if config.OG_FONT_PATH:
        try:
            return ImageFont.truetype(config.OG_FONT_PATH, size)
        except OSError as e:
            logger.warning(f"⚠️ OG font could not be loaded from {config.OG_FONT_PATH}: {e}")
    return ImageFont.load_default(size=size)


def _gradient(size: tuple[int, int]) -> Image.Image:
    width, height = size
    image = Image.new("RGB", size, GRADIENT_FROM)
    draw = ImageDraw.Draw(image)
    span = width + height
    for x in range(span):
        ratio = x / span
        color = tuple(int(a + (b - a) * ratio) for a, b in zip(GRADIENT_FROM, GRADIENT_TO))
        # 135deg: diagonal bands from top-left to bottom-right
        draw.line([(x, 0), (x - height, height)], fill=color, width=2)
    return image


def _centered(draw: ImageDraw.ImageDraw, y: int, text: str, font, fill) -> int:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (OG_SIZE[0] - (right - left)) // 2
    draw.text((x, y), text, font=font, fill=fill)
    return y + (bottom - top)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def render_og_image(shop_name: str | None, shop_description: str | None) -> bytes:
    name = _truncate(shop_name or "동네 가게", 24)
    description = _truncate(shop_description or "우리 동네 예약 서비스", 48)

    image = _gradient(OG_SIZE)
    draw = ImageDraw.Draw(image)

    badge = 80
    badge_left = (OG_SIZE[0] - badge) // 2
    draw.rounded_rectangle(
        [(badge_left, 170), (badge_left + badge, 170 + badge)], radius=20, fill=(255, 255, 255)
    )

    y = _centered(draw, 290, name, _font(48), (255, 255, 255))
    y = _centered(draw, y + 24, description, _font(24), DESCRIPTION_COLOR)
    _centered(draw, y + 50, FOOTER_TEXT, _font(16), FOOTER_COLOR)

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
