"""Open Graph share image (1200x630 PNG) rendered with Pillow."""

import io
import textwrap

from PIL import Image, ImageDraw, ImageFont

WIDTH, HEIGHT = 1200, 630
DEFAULT_TITLE = "AI SEO Analyzer"
SUBTITLE = "Free AI-powered SEO analysis tool"
BUTTON_TEXT = "Analyze your website now"
BUTTON_COLOR = "#dc2626"


def _font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("DejaVuSans-Bold.ttf", size)
    except OSError:
        return ImageFont.load_default(size=size)


def _centered(draw: ImageDraw.ImageDraw, y: int, text: str, font, fill: str) -> int:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    draw.text(((WIDTH - (right - left)) / 2, y), text, font=font, fill=fill)
    return y + (bottom - top)


def render_og_image(title: str | None = None) -> bytes:
    title = (title or "").strip() or DEFAULT_TITLE
    image = Image.new("RGB", (WIDTH, HEIGHT), "white")
    draw = ImageDraw.Draw(image)

    title_font = _font(60)
    lines = textwrap.wrap(title, width=32)[:3]
    y = 150 if len(lines) > 1 else 200
    for line in lines:
        y = _centered(draw, y, line, title_font, "black") + 12

    y = _centered(draw, y + 20, SUBTITLE, _font(30), "#666666") + 50

    button_font = _font(24)
    left, top, right, bottom = draw.textbbox((0, 0), BUTTON_TEXT, font=button_font)
    bw, bh = (right - left) + 48, (bottom - top) + 24
    bx = (WIDTH - bw) / 2
    draw.rounded_rectangle((bx, y, bx + bw, y + bh), radius=8, fill=BUTTON_COLOR)
    draw.text((bx + 24, y + 12 - top), BUTTON_TEXT, font=button_font, fill="white")

    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
