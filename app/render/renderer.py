"""
Pillow renderer for layered image templates.

A template is a canvas plus a list of layers (text, image, shape, gradient,
container). Layers are drawn in zIndex order onto an RGBA canvas and the
result is encoded as PNG, JPEG or WebP.

Remote images are fetched up front, and only from an allow-list of CDN hosts
so a template cannot be used to reach internal addresses.
"""

import asyncio
import io
import ipaddress
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
from PIL import Image, ImageColor, ImageDraw, ImageFont, ImageOps

from .. import config
from ..utils.sanitization import sanitize_render_text
from .variables import RenderContext, calculate_auto_size, capitalize, resolve_color, resolve_variables

logger = logging.getLogger(__name__)

RENDER_ENGINE = "pillow"

DEFAULT_CANVAS = {"width": 1080, "height": 1350, "backgroundColor": "#000000"}

ALLOWED_IMAGE_DOMAINS = [
    "supabase.co",
    "supabase.in",
    "cdn.aerialshots.media",
    "images.aerialshots.media",
    "storage.googleapis.com",
    "s3.amazonaws.com",
    "imagedelivery.net",
    "cloudflare-ipfs.com",
    "cloudinary.com",
    "res.cloudinary.com",
    "imgix.net",
    "via.placeholder.com",
    "placehold.co",
    "picsum.photos",
]

BLOCKED_HOSTNAMES = {"localhost", "::1"}

# 100.64.0.0/10 is carrier-grade NAT
BLOCKED_NETWORKS = [
    ipaddress.ip_network(n)
    for n in (
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "0.0.0.0/8",
        "100.64.0.0/10",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
]

OUTPUT_FORMATS = {"png": "PNG", "jpeg": "JPEG", "jpg": "JPEG", "webp": "WEBP"}

IMAGE_FETCH_TIMEOUT = 10.0
MAX_IMAGE_BYTES = 20 * 1024 * 1024


class RenderError(Exception):
    """Raised for templates that cannot be rendered at all"""

    pass


@dataclass
class RenderResult:
    success: bool
    width: int
    height: int
    format: str
    render_time_ms: int
    image_bytes: Optional[bytes] = None
    engine: str = RENDER_ENGINE
    error: Optional[str] = None


# ============================================================================
# URL SAFETY
# ============================================================================


def get_additional_allowed_domains() -> list[str]:
    raw = config.DEV_ALLOW_IMAGE_DOMAINS or ""
    return [d.strip().lower() for d in raw.split(",") if d.strip()]


def _is_blocked_host(hostname: str) -> bool:
    if hostname in BLOCKED_HOSTNAMES:
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(address in network for network in BLOCKED_NETWORKS)


def is_valid_image_url(url: Optional[str]) -> bool:
    if not url or not isinstance(url, str):
        return False

    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    is_dev_http = parsed.scheme == "http" and config.IS_DEVELOPMENT
    if parsed.scheme != "https" and not is_dev_http:
        return False

    hostname = (parsed.hostname or "").lower()
    if not hostname or _is_blocked_host(hostname):
        return False

    allowed = ALLOWED_IMAGE_DOMAINS + get_additional_allowed_domains()
    if not any(hostname == domain or hostname.endswith(f".{domain}") for domain in allowed):
        if config.IS_DEVELOPMENT:
            logger.warning(
                f"🚫 Blocked image from non-allowed host {hostname}; add it to DEV_ALLOW_IMAGE_DOMAINS for testing"
            )
        return False

    return True


# ============================================================================
# HELPERS
# ============================================================================


def parse_color(color: Optional[str], default: tuple = (0, 0, 0, 255)) -> tuple:
    if not color:
        return default
    if color.lower() == "transparent":
        return (0, 0, 0, 0)
    try:
        return ImageColor.getcolor(color, "RGBA")
    except ValueError:
        return default


def load_font(size: int) -> ImageFont.ImageFont:
    size = max(1, int(size))
    if config.RENDER_FONT_PATH:
        try:
            return ImageFont.truetype(config.RENDER_FONT_PATH, size)
        except OSError as e:
            logger.warning(f"⚠️ Could not load font {config.RENDER_FONT_PATH}: {e}")
    return ImageFont.load_default(size=size)


def _dimension(value: Any, parent: float, default: float = 0) -> float:
    """Numbers are pixels, "50%" strings are relative to the parent box"""
    if value is None or value == "":
        return default
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        if text.endswith("%"):
            return parent * float(text[:-1]) / 100
        return float(text.removesuffix("px"))
    except ValueError:
        return default


def _padding(value: Any) -> tuple[float, float, float, float]:
    """(top, right, bottom, left)"""
    if not value:
        return (0, 0, 0, 0)
    if isinstance(value, (int, float)):
        return (value, value, value, value)
    return (value.get("top", 0), value.get("right", 0), value.get("bottom", 0), value.get("left", 0))


def layer_box(position: dict, parent: tuple[float, float, float, float]) -> tuple[float, float, float, float]:
    """Resolve a layer position to an absolute (left, top, width, height) inside its parent box"""
    px, py, pw, ph = parent
    width = _dimension(position.get("width"), pw, pw)
    height = _dimension(position.get("height"), ph, ph)
    anchor = position.get("anchor") or "top-left"
    x = _dimension(position.get("x"), pw)
    y = _dimension(position.get("y"), ph)

    if "right" in anchor:
        left = pw - x - width
    elif "center" in anchor:
        left = x - width / 2
    else:
        left = x

    if "bottom" in anchor:
        top = ph - y - height
    elif anchor in ("center", "center-left", "center-right"):
        top = y - height / 2
    else:
        top = y

    return (px + left, py + top, width, height)


def _paste(target: Image.Image, tile: Image.Image, left: int, top: int) -> None:
    """alpha_composite without the non-negative destination restriction"""
    if left < 0 or top < 0:
        tile = tile.crop((max(0, -left), max(0, -top), tile.width, tile.height))
        left, top = max(0, left), max(0, top)
    if tile.width > 0 and tile.height > 0:
        target.alpha_composite(tile, (left, top))


def _sorted_visible(layers: list[dict]) -> list[dict]:
    visible = [layer for layer in layers or [] if layer.get("visible") is not False]
    return sorted(visible, key=lambda layer: (layer.get("position") or {}).get("zIndex") or 0)


def _collect_image_urls(layers: list[dict], context: RenderContext) -> set[str]:
    urls = set()
    for layer in layers or []:
        if layer.get("type") == "image":
            url = resolve_image_url(layer.get("content") or {}, context)
            if url:
                urls.add(url)
        elif layer.get("type") == "container":
            urls |= _collect_image_urls((layer.get("content") or {}).get("children") or [], context)
    return urls


def resolve_image_url(content: dict, context: RenderContext) -> Optional[str]:
    url = content.get("url") or ""
    variable = content.get("variable")
    if variable and context.variables.get(variable):
        url = str(context.variables[variable])

    brand_kit = context.brand_kit or {}
    if variable == "logoUrl" and brand_kit.get("logoUrl"):
        url = brand_kit["logoUrl"]
    elif variable == "headshotUrl" and brand_kit.get("headshotUrl"):
        url = brand_kit["headshotUrl"]

    url = resolve_variables(url, context) if url else url
    return url or None


async def fetch_images(urls: set[str], client: Optional[httpx.AsyncClient] = None) -> dict[str, Image.Image]:
    """Download every allowed image once; blocked or failed URLs are simply absent"""
    images: dict[str, Image.Image] = {}
    allowed = [u for u in urls if is_valid_image_url(u)]
    for blocked in urls.difference(allowed):
        logger.warning(f"🚫 Blocked image URL: {blocked[:100]}")
    if not allowed:
        return images

    async def fetch(http: httpx.AsyncClient, url: str) -> None:
        try:
            response = await http.get(url)
            response.raise_for_status()
            if len(response.content) > MAX_IMAGE_BYTES:
                logger.warning(f"⚠️ Image too large, skipped: {url[:100]}")
                return
            images[url] = Image.open(io.BytesIO(response.content)).convert("RGBA")
        except (httpx.HTTPError, OSError) as e:
            logger.warning(f"⚠️ Failed to load image {url[:100]}: {e}")

    if client is not None:
        await asyncio.gather(*(fetch(client, url) for url in allowed))
    else:
        async with httpx.AsyncClient(timeout=IMAGE_FETCH_TIMEOUT, follow_redirects=False) as http:
            await asyncio.gather(*(fetch(http, url) for url in allowed))
    return images


# ============================================================================
# LAYER DRAWING
# ============================================================================


class LayerPainter:
    """Draws resolved layers onto an RGBA canvas"""

    def __init__(self, canvas: Image.Image, context: RenderContext, images: dict[str, Image.Image]):
        self.canvas = canvas
        self.context = context
        self.images = images

    def paint(self, layers: list[dict], parent: tuple[float, float, float, float]) -> None:
        for layer in _sorted_visible(layers):
            self.paint_layer(layer, parent)

    def paint_layer(self, layer: dict, parent: tuple[float, float, float, float], box=None) -> None:
        layer_type = layer.get("type")
        content = layer.get("content") or {}
        box = box or layer_box(layer.get("position") or {}, parent)

        overlay = Image.new("RGBA", self.canvas.size, (0, 0, 0, 0))
        if layer_type == "text":
            self._text(overlay, content, box)
        elif layer_type == "image":
            self._image(overlay, content, box)
        elif layer_type == "shape":
            self._shape(overlay, content, box)
        elif layer_type == "gradient":
            self._gradient(overlay, content, box)
        elif layer_type == "container":
            self._container(content, box)
            return
        else:
            logger.debug(f"Skipping unknown layer type {layer_type}")
            return

        opacity = layer.get("opacity")
        if opacity is not None and opacity < 1:
            alpha = overlay.getchannel("A").point(lambda a: int(a * max(0.0, opacity)))
            overlay.putalpha(alpha)
        self.canvas.alpha_composite(overlay)

    def _text(self, overlay: Image.Image, content: dict, box) -> None:
        text = content.get("text") or ""
        variable = content.get("variable")
        if variable and self.context.variables.get(variable) is not None:
            text = str(self.context.variables[variable])
        text = sanitize_render_text(resolve_variables(text, self.context))

        transform = content.get("textTransform")
        if transform == "uppercase":
            text = text.upper()
        elif transform == "lowercase":
            text = text.lower()
        elif transform == "capitalize":
            text = capitalize(text)
        if not text:
            return

        font_cfg = content.get("font") or {}
        left, top, width, height = box
        size = font_cfg.get("size") or 48
        if (content.get("autoSize") or {}).get("enabled"):
            size = calculate_auto_size(text, content["autoSize"], width)
        font = load_font(size)

        color_variable = font_cfg.get("colorVariable")
        color = (
            resolve_color(self.context.variables.get(color_variable), self.context)
            if color_variable
            else font_cfg.get("color") or "#ffffff"
        )

        draw = ImageDraw.Draw(overlay)
        lines = self._wrap(draw, text, font, width)
        line_clamp = content.get("lineClamp")
        if line_clamp and len(lines) > line_clamp:
            lines = lines[:line_clamp]
            lines[-1] = lines[-1].rstrip() + "..."

        line_height = size * (font_cfg.get("lineHeight") or 1.3)
        align = font_cfg.get("align") or "left"
        fill = parse_color(color, (255, 255, 255, 255))
        y = top
        for line in lines:
            line_width = draw.textlength(line, font=font)
            if align == "center":
                x = left + (width - line_width) / 2
            elif align == "right":
                x = left + width - line_width
            else:
                x = left
            draw.text((x, y), line, font=font, fill=fill)
            y += line_height

    @staticmethod
    def _wrap(draw: ImageDraw.ImageDraw, text: str, font, max_width: float) -> list[str]:
        lines = []
        for paragraph in text.split("\n"):
            current = ""
            for word in paragraph.split(" "):
                candidate = f"{current} {word}" if current else word
                if not current or draw.textlength(candidate, font=font) <= max_width:
                    current = candidate
                else:
                    lines.append(current)
                    current = word
            lines.append(current)
        return lines

    def _image(self, overlay: Image.Image, content: dict, box) -> None:
        url = resolve_image_url(content, self.context)
        source = self.images.get(url) if url else None
        if source is None:
            return

        left, top, width, height = (int(round(v)) for v in box)
        if width <= 0 or height <= 0:
            return

        if content.get("fit") == "contain":
            fitted = ImageOps.contain(source, (width, height))
            tile = Image.new("RGBA", (width, height), (0, 0, 0, 0))
            tile.paste(fitted, ((width - fitted.width) // 2, (height - fitted.height) // 2))
        else:
            tile = ImageOps.fit(source, (width, height))

        radius = content.get("borderRadius") or 0
        if radius:
            mask = Image.new("L", (width, height), 0)
            ImageDraw.Draw(mask).rounded_rectangle((0, 0, width - 1, height - 1), radius=int(radius), fill=255)
            tile.putalpha(Image.composite(tile.getchannel("A"), mask, mask))

        _paste(overlay, tile, left, top)

    def _shape(self, overlay: Image.Image, content: dict, box) -> None:
        fill_variable = content.get("fillVariable")
        fill = (
            resolve_color(self.context.variables.get(fill_variable), self.context)
            if fill_variable
            else content.get("fill") or "transparent"
        )
        left, top, width, height = box
        if width <= 0 or height <= 0:
            return
        rect = (left, top, left + width - 1, top + height - 1)
        stroke = content.get("stroke") or {}
        outline = parse_color(stroke.get("color")) if stroke else None
        stroke_width = int(stroke.get("width") or 0) if stroke else 0

        draw = ImageDraw.Draw(overlay)
        if content.get("shape") == "ellipse":
            draw.ellipse(rect, fill=parse_color(fill), outline=outline, width=stroke_width)
        else:
            draw.rounded_rectangle(
                rect,
                radius=int(content.get("borderRadius") or 0),
                fill=parse_color(fill),
                outline=outline,
                width=stroke_width,
            )

    def _gradient(self, overlay: Image.Image, content: dict, box) -> None:
        stops = sorted(content.get("stops") or [], key=lambda s: s.get("position", 0))
        if len(stops) < 2:
            return
        left, top, width, height = (int(round(v)) for v in box)
        if width <= 0 or height <= 0:
            return

        colors = [(s.get("position", 0), parse_color(resolve_color(s.get("color"), self.context))) for s in stops]
        if content.get("type") == "radial":
            tile = self._radial_gradient(colors, width, height)
        else:
            angle = content.get("angle")
            tile = self._linear_gradient(colors, width, height, 180 if angle is None else angle)
        _paste(overlay, tile, left, top)

    @staticmethod
    def _color_at(colors: list, t: float) -> tuple:
        if t <= colors[0][0]:
            return colors[0][1]
        for (p0, c0), (p1, c1) in zip(colors, colors[1:]):
            if p0 <= t <= p1:
                f = 0 if p1 == p0 else (t - p0) / (p1 - p0)
                return tuple(int(a + (b - a) * f) for a, b in zip(c0, c1))
        return colors[-1][1]

    def _linear_gradient(self, colors: list, width: int, height: int, angle: float) -> Image.Image:
        # Build a top-to-bottom strip (CSS 180deg) and rotate it into place
        diagonal = int((width**2 + height**2) ** 0.5) + 2
        strip = Image.new("RGBA", (1, diagonal))
        for y in range(diagonal):
            strip.putpixel((0, y), self._color_at(colors, y / max(1, diagonal - 1)))
        square = strip.resize((diagonal, diagonal))
        rotated = square.rotate(180 - angle, resample=Image.BICUBIC)
        left = (diagonal - width) // 2
        top = (diagonal - height) // 2
        return rotated.crop((left, top, left + width, top + height))

    def _radial_gradient(self, colors: list, width: int, height: int) -> Image.Image:
        tile = Image.new("RGBA", (width, height), colors[-1][1])
        draw = ImageDraw.Draw(tile)
        steps = max(width, height) // 2
        for i in range(steps, 0, -1):
            t = i / steps
            rx, ry = width / 2 * t, height / 2 * t
            draw.ellipse(
                (width / 2 - rx, height / 2 - ry, width / 2 + rx, height / 2 + ry),
                fill=self._color_at(colors, t),
            )
        return tile

    def _container(self, content: dict, box) -> None:
        pad_top, pad_right, pad_bottom, pad_left = _padding(content.get("padding"))
        left, top, width, height = box
        inner = (left + pad_left, top + pad_top, width - pad_left - pad_right, height - pad_top - pad_bottom)
        direction = content.get("direction") or "column"
        gap = content.get("gap") or 0

        cursor = 0.0
        for child in content.get("children") or []:
            if child.get("visible") is False:
                continue
            position = child.get("position") or {}
            if direction == "row":
                child_width = _dimension(position.get("width"), inner[2], inner[2])
                child_box = (inner[0] + cursor, inner[1], child_width, _dimension(position.get("height"), inner[3], inner[3]))
                cursor += child_width + gap
            else:
                child_height = _dimension(position.get("height"), inner[3], self._natural_height(child, inner[2]))
                child_box = (inner[0], inner[1] + cursor, _dimension(position.get("width"), inner[2], inner[2]), child_height)
                cursor += child_height + gap
            self.paint_layer(child, inner, box=child_box)

    def _natural_height(self, layer: dict, width: float) -> float:
        if layer.get("type") != "text":
            return 0
        content = layer.get("content") or {}
        font_cfg = content.get("font") or {}
        size = font_cfg.get("size") or 48
        text = sanitize_render_text(resolve_variables(content.get("text") or "", self.context))
        font = load_font(size)
        measure = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
        lines = self._wrap(measure, text, font, width) if text else []
        return len(lines) * size * (font_cfg.get("lineHeight") or 1.3)


# ============================================================================
# ENTRY POINT
# ============================================================================


def encode_image(image: Image.Image, output_format: str, quality: int) -> bytes:
    pil_format = OUTPUT_FORMATS.get(output_format.lower())
    if not pil_format:
        raise RenderError(f"Unsupported output format: {output_format}")

    buffer = io.BytesIO()
    if pil_format == "JPEG":
        image.convert("RGB").save(buffer, format="JPEG", quality=quality, optimize=True)
    elif pil_format == "WEBP":
        image.save(buffer, format="WEBP", quality=quality)
    else:
        image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def _compose(
    template: dict,
    canvas_cfg: dict,
    size: tuple[int, int],
    context: RenderContext,
    images: dict,
    background: Optional[Image.Image],
    output_format: str,
    quality: int,
) -> bytes:
    canvas = Image.new("RGBA", size, parse_color(resolve_color(canvas_cfg.get("backgroundColor"), context)))
    if background is not None:
        canvas.alpha_composite(ImageOps.fit(background, canvas.size))
    LayerPainter(canvas, context, images).paint(template.get("layers") or [], (0, 0, size[0], size[1]))
    return encode_image(canvas, output_format, quality)


async def render_template(
    template: Optional[dict],
    context: RenderContext,
    output_format: str = "png",
    quality: int = 90,
    width: Optional[int] = None,
    height: Optional[int] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RenderResult:
    """Render a template definition ({canvas, layers}) to encoded image bytes"""
    started = time.monotonic()

    def elapsed() -> int:
        return int((time.monotonic() - started) * 1000)

    if not template:
        return RenderResult(False, 0, 0, output_format, elapsed(), error="Template is required")

    canvas_cfg = {**DEFAULT_CANVAS, **(template.get("canvas") or {})}
    canvas_width = int(width or canvas_cfg["width"])
    canvas_height = int(height or canvas_cfg["height"])

    try:
        images = await fetch_images(_collect_image_urls(template.get("layers") or [], context), http_client)

        background = None
        background_url = canvas_cfg.get("backgroundImage")
        if background_url:
            background_url = resolve_variables(background_url, context)
            background = (await fetch_images({background_url}, http_client)).get(background_url)

        # Pillow work runs off the event loop
        image_bytes = await asyncio.to_thread(
            _compose,
            template,
            canvas_cfg,
            (canvas_width, canvas_height),
            context,
            images,
            background,
            output_format,
            quality,
        )
    except (RenderError, OSError, ValueError, KeyError, TypeError) as e:
        logger.error(f"❌ Render failed: {e}")
        return RenderResult(False, 0, 0, output_format, elapsed(), error=str(e) or "Render failed")

    return RenderResult(True, canvas_width, canvas_height, output_format, elapsed(), image_bytes=image_bytes)
