from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from typing import Any

import cairo
from PIL import Image, ImageColor, ImageDraw, ImageFont

from .errors import StagingError
from .models.edit_models import EditDescription, StickerOverlay, TextGradient, TextOverlay
from .sources import SourceResolver, decode_data_url

logger = logging.getLogger(__name__)

EMOJI_FONT_CANDIDATES = ("NotoColorEmoji.ttf", "Apple Color Emoji.ttc", "seguiemj.ttf")
# Bitmap emoji fonts only load at their native strike size.
EMOJI_NATIVE_SIZE = 109


@dataclass
class Layer:
    image: Image.Image
    x: float
    y: float
    opacity: float = 1.0


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _parse_alpha(value: str) -> tuple[str, float | None]:
    if "@" not in value:
        return value, None
    base, alpha_raw = value.rsplit("@", 1)
    try:
        alpha = float(alpha_raw)
    except ValueError:
        return value, None
    return base, clamp(alpha)


def parse_color(value: Any, default: tuple[int, int, int, int]) -> tuple[int, int, int, int]:
    """Parse CSS-ish colors: names, #RGB, #RRGGBB, #RRGGBBAA and ``color@alpha``."""
    if not isinstance(value, str):
        return default
    raw = value.strip()
    if not raw:
        return default
    if raw.lower() in {"transparent", "none", "clear"}:
        return (0, 0, 0, 0)
    base, alpha = _parse_alpha(raw)
    try:
        if base.startswith("#") and len(base) == 9:
            rgb = ImageColor.getrgb(base[:7])
            return (rgb[0], rgb[1], rgb[2], int(base[7:9], 16))
        rgb = ImageColor.getrgb(base)
    except ValueError:
        logger.warning("Unrecognized color %r, using default", value)
        return default
    if alpha is None:
        return (rgb[0], rgb[1], rgb[2], default[3])
    return (rgb[0], rgb[1], rgb[2], int(alpha * 255))


def apply_opacity(image: Image.Image, opacity: float) -> Image.Image:
    opacity = clamp(opacity)
    if opacity >= 0.999:
        return image
    alpha = image.getchannel("A")
    alpha = alpha.point(lambda value: int(value * opacity))
    image.putalpha(alpha)
    return image


def render_linear_gradient(
    size: tuple[int, int],
    start_color: tuple[int, int, int, int],
    end_color: tuple[int, int, int, int],
    angle_deg: float,
) -> Image.Image:
    width, height = size
    surface = cairo.ImageSurface(cairo.FORMAT_ARGB32, width, height)
    ctx = cairo.Context(surface)
    angle = math.radians(angle_deg)
    half_w = width / 2
    half_h = height / 2
    x0 = half_w - math.cos(angle) * half_w
    y0 = half_h - math.sin(angle) * half_h
    x1 = half_w + math.cos(angle) * half_w
    y1 = half_h + math.sin(angle) * half_h
    grad = cairo.LinearGradient(x0, y0, x1, y1)
    sr, sg, sb, sa = (c / 255.0 for c in start_color)
    er, eg, eb, ea = (c / 255.0 for c in end_color)
    grad.add_color_stop_rgba(0, sr, sg, sb, sa)
    grad.add_color_stop_rgba(1, er, eg, eb, ea)
    ctx.rectangle(0, 0, width, height)
    ctx.set_source(grad)
    ctx.fill()
    surface.flush()
    buf = surface.get_data()
    image = Image.frombuffer("RGBA", (width, height), buf, "raw", "BGRA", 0, 1)
    return image.copy()


def _load_font(font: str | None, size: int, bold: bool = False) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    if font:
        try:
            return ImageFont.truetype(font, size)
        except OSError:
            pass
    fallback = "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"
    try:
        return ImageFont.truetype(fallback, size)
    except OSError:
        return ImageFont.load_default()


def _text_bbox(
    text: str,
    font: ImageFont.ImageFont,
    spacing: int,
    align: str,
    stroke_width: int,
) -> tuple[int, int, int, int]:
    dummy = Image.new("RGBA", (2, 2), (0, 0, 0, 0))
    draw = ImageDraw.Draw(dummy)
    return draw.multiline_textbbox(
        (0, 0),
        text,
        font=font,
        spacing=spacing,
        align=align,
        stroke_width=stroke_width,
    )


def _build_text_image(
    text: str,
    font: ImageFont.ImageFont,
    color: tuple[int, int, int, int],
    align: str,
    spacing: int,
    outline_width: int,
    outline_color: tuple[int, int, int, int],
    gradient: TextGradient | None,
) -> Image.Image:
    left, top, right, bottom = _text_bbox(text, font, spacing, align, outline_width)
    text_width = max(1, right - left)
    text_height = max(1, bottom - top)
    origin = (-left, -top)
    layer = Image.new("RGBA", (text_width, text_height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    if gradient is not None:
        mask = Image.new("L", (text_width, text_height), 0)
        ImageDraw.Draw(mask).multiline_text(
            origin, text, font=font, fill=255, spacing=spacing, align=align
        )
        gradient_img = render_linear_gradient(
            (text_width, text_height),
            parse_color(gradient.start_color, color),
            parse_color(gradient.end_color, color),
            gradient.angle,
        )
        if outline_width > 0:
            draw.multiline_text(
                origin,
                text,
                font=font,
                fill=(0, 0, 0, 0),
                spacing=spacing,
                align=align,
                stroke_width=outline_width,
                stroke_fill=outline_color,
            )
        layer.paste(gradient_img, (0, 0), mask)
    else:
        draw.multiline_text(
            origin,
            text,
            font=font,
            fill=color,
            spacing=spacing,
            align=align,
            stroke_width=outline_width,
            stroke_fill=outline_color,
        )
    return layer


def _draw_rounded_rect(
    draw: ImageDraw.ImageDraw,
    box: tuple[int, int, int, int],
    radius: int,
    fill: tuple[int, int, int, int],
) -> None:
    if radius > 0:
        draw.rounded_rectangle(box, radius=radius, fill=fill)
    else:
        draw.rectangle(box, fill=fill)


class OverlayRenderer:
    """
    Rasterizes drawing, text and sticker overlays onto one transparent
    canvas the size of the encoded frame.

    Layers are composited in a fixed order: the freehand drawing first,
    then texts, then stickers, so stickers always end up on top.
    """

    def __init__(
        self,
        width: int,
        height: int,
        display_height: float | None = None,
        resolver: SourceResolver | None = None,
    ):
        self.width = width
        self.height = height
        self.display_height = display_height
        self.resolver = resolver or SourceResolver()

    @property
    def scale_factor(self) -> float:
        # Sizes are authored against the on-screen preview height.
        if not self.display_height:
            return 1.0
        return self.height / self.display_height

    def render(self, edits: EditDescription) -> bytes:
        canvas = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))

        if edits.drawing_data_url:
            self._composite_drawing(canvas, edits.drawing_data_url)
        for text in edits.texts:
            layer = self._render_text(text)
            if layer is not None:
                self._composite_layer(canvas, layer)
        for sticker in edits.stickers:
            layer = self._render_sticker(sticker)
            if layer is not None:
                self._composite_layer(canvas, layer)

        buffer = io.BytesIO()
        canvas.save(buffer, format="PNG")
        return buffer.getvalue()

    def _composite_layer(self, canvas: Image.Image, layer: Layer) -> None:
        image = apply_opacity(layer.image, layer.opacity)
        canvas.paste(image, (int(layer.x), int(layer.y)), image)

    def _centered_at(self, image: Image.Image, x_percent: float, y_percent: float) -> tuple[float, float]:
        cx = self.width * x_percent / 100.0
        cy = self.height * y_percent / 100.0
        return cx - image.width / 2, cy - image.height / 2

    def _composite_drawing(self, canvas: Image.Image, data_url: str) -> None:
        try:
            drawing = Image.open(io.BytesIO(decode_data_url(data_url)))
            drawing.load()
        except (OSError, StagingError) as exc:
            raise StagingError(f"Failed to decode drawing layer: {exc}") from exc
        drawing = drawing.convert("RGBA")
        if drawing.size != canvas.size:
            drawing = drawing.resize(canvas.size, resample=Image.LANCZOS)
        canvas.alpha_composite(drawing)

    def _render_text(self, overlay: TextOverlay) -> Layer | None:
        if not overlay.text.strip():
            return None

        size = max(8, int(round(overlay.font_size * overlay.scale * self.scale_factor)))
        font = _load_font(overlay.font_family, size, bold=overlay.bold)
        align = overlay.align.lower() if overlay.align else "center"
        spacing = int(round(size * 0.2))
        outline_width = int(round(overlay.outline_width * self.scale_factor))

        image = _build_text_image(
            text=overlay.text,
            font=font,
            color=parse_color(overlay.color, (255, 255, 255, 255)),
            align=align,
            spacing=spacing,
            outline_width=outline_width,
            outline_color=parse_color(overlay.outline_color, (0, 0, 0, 255)),
            gradient=overlay.gradient,
        )

        if overlay.background_color:
            padding = int(round(size * 0.3))
            background = Image.new(
                "RGBA",
                (image.width + padding * 2, image.height + padding * 2),
                (0, 0, 0, 0),
            )
            _draw_rounded_rect(
                ImageDraw.Draw(background),
                (0, 0, background.width - 1, background.height - 1),
                int(round(size * 0.25)),
                parse_color(overlay.background_color, (0, 0, 0, 160)),
            )
            background.alpha_composite(image, (padding, padding))
            image = background

        if overlay.rotation:
            # Positive degrees rotate clockwise on screen.
            image = image.rotate(-overlay.rotation, resample=Image.BICUBIC, expand=True)

        x, y = self._centered_at(image, overlay.x, overlay.y)
        return Layer(image=image, x=x, y=y, opacity=overlay.opacity)

    def _render_sticker(self, sticker: StickerOverlay) -> Layer | None:
        size = max(1, int(round(sticker.size * self.scale_factor)))
        if sticker.image_url:
            image = self._load_sticker_image(sticker.image_url)
        else:
            image = self._render_emoji(sticker.emoji or "")
        if image is None:
            return None

        image.thumbnail((size, size), resample=Image.LANCZOS)
        if image.width < size and image.height < size:
            ratio = size / max(image.width, image.height)
            image = image.resize(
                (max(1, int(image.width * ratio)), max(1, int(image.height * ratio))),
                resample=Image.LANCZOS,
            )
        if sticker.rotation:
            image = image.rotate(-sticker.rotation, resample=Image.BICUBIC, expand=True)

        x, y = self._centered_at(image, sticker.x, sticker.y)
        return Layer(image=image, x=x, y=y, opacity=sticker.opacity)

    def _load_sticker_image(self, url: str) -> Image.Image | None:
        try:
            data = self.resolver.read_sync(url)
            image = Image.open(io.BytesIO(data))
            image.load()
        except (OSError, StagingError) as exc:
            logger.warning("Skipping sticker %s: %s", url[:80], exc)
            return None
        return image.convert("RGBA")

    def _render_emoji(self, emoji: str) -> Image.Image | None:
        if not emoji.strip():
            return None
        for candidate in EMOJI_FONT_CANDIDATES:
            try:
                font = ImageFont.truetype(candidate, EMOJI_NATIVE_SIZE)
            except OSError:
                continue
            return self._draw_glyphs(emoji, font, embedded_color=True)
        return self._draw_glyphs(emoji, _load_font(None, EMOJI_NATIVE_SIZE), embedded_color=False)

    @staticmethod
    def _draw_glyphs(text: str, font: ImageFont.ImageFont, embedded_color: bool) -> Image.Image:
        left, top, right, bottom = _text_bbox(text, font, 0, "left", 0)
        image = Image.new("RGBA", (max(1, right - left), max(1, bottom - top)), (0, 0, 0, 0))
        ImageDraw.Draw(image).text(
            (-left, -top),
            text,
            font=font,
            fill=(255, 255, 255, 255),
            embedded_color=embedded_color,
        )
        return image
