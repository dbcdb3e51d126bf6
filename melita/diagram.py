"""
Mermaid rendering and diagram export.

Rendering goes through a Kroki-compatible service, which returns SVG.
Export clones that SVG, pins its pixel size and background, and rasterizes
it at EXPORT_SCALE. When rasterization is blocked the prepared SVG document
is returned instead.
"""
from __future__ import annotations

import copy
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from io import BytesIO
from typing import Callable, Optional

import httpx
from PIL import Image

from melita.config import settings, logger
from melita.exceptions import DiagramNotReadyError, RasterizationBlockedError, RenderError

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"

ET.register_namespace("", SVG_NS)
ET.register_namespace("xlink", XLINK_NS)

RENDER_ERROR_MESSAGE = "Failed to render diagram."
# Plain <text> labels; rasterizers do not draw <foreignObject> HTML
RENDER_DIRECTIVE = '%%{init: {"flowchart": {"htmlLabels": false}}}%%'
DEFAULT_WIDTH = 800.0
DEFAULT_HEIGHT = 600.0
MIN_ZOOM = 0.5
ZOOM_STEP = 0.1

_LENGTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(px)?\s*$")


@dataclass(frozen=True)
class Drawing:
    source: str
    svg: str
    width: float
    height: float


@dataclass
class DiagramView:
    drawing: Optional[Drawing] = None
    zoom: float = 1.0
    error: Optional[str] = None


@dataclass(frozen=True)
class ExportedFile:
    filename: str
    media_type: str
    content: bytes = field(repr=False)


def _parse_length(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = _LENGTH_RE.match(value)
    if not match:
        return None
    return float(match.group(1))


def svg_dimensions(root: ET.Element) -> tuple[float, float]:
    """Pixel size from width/height attributes, then viewBox, then defaults."""
    width = _parse_length(root.get("width"))
    height = _parse_length(root.get("height"))

    view_box = root.get("viewBox")
    if view_box and (width is None or height is None):
        parts = view_box.replace(",", " ").split()
        if len(parts) == 4:
            try:
                width = width or float(parts[2])
                height = height or float(parts[3])
            except ValueError:
                pass

    return width or DEFAULT_WIDTH, height or DEFAULT_HEIGHT


def parse_svg(svg: str) -> ET.Element:
    try:
        root = ET.fromstring(svg)
    except ET.ParseError as exc:
        raise RenderError(f"Invalid SVG: {exc}") from exc
    if root.tag not in ("svg", f"{{{SVG_NS}}}svg"):
        raise RenderError(f"Unexpected root element: {root.tag}")
    return root


def prepare_export_svg(svg: str, width: float, height: float, background: str) -> str:
    """
    Clone the drawing with fixed pixel size and a solid background and
    serialize it as a self-contained SVG document.
    """
    clone = copy.deepcopy(parse_svg(svg))
    clone.set("width", f"{width:g}")
    clone.set("height", f"{height:g}")

    style = clone.get("style", "").strip().rstrip(";")
    background_rule = f"background-color: {background}"
    clone.set("style", f"{style}; {background_rule}" if style else background_rule)

    document = ET.tostring(clone, encoding="unicode")
    if not re.match(r'^<svg[^>]+xmlns="http://www\.w3\.org/2000/svg"', document):
        document = re.sub(r"^<svg", f'<svg xmlns="{SVG_NS}"', document, count=1)
    return document


def rasterize_svg(svg: str, width: int, height: int, background: str) -> bytes:
    """
    Rasterize an SVG document to a PNG of exactly width x height pixels
    on a solid background.

    Raises:
        RasterizationBlockedError: If the SVG cannot be rasterized
    """
    try:
        # cairosvg loads libcairo at import time
        import cairosvg

        png = cairosvg.svg2png(
            bytestring=svg.encode("utf-8"),
            output_width=width,
            output_height=height,
            background_color=background,
            unsafe=False,
        )
        image = Image.open(BytesIO(png)).convert("RGBA")
    except Exception as exc:
        raise RasterizationBlockedError(f"Rasterization blocked: {exc}") from exc

    canvas = Image.new("RGB", (width, height), background)
    if image.size != canvas.size:
        image = image.resize(canvas.size, Image.Resampling.LANCZOS)
    canvas.paste(image, (0, 0), image)

    out = BytesIO()
    canvas.save(out, format="PNG")
    return out.getvalue()


def _timestamp() -> int:
    return int(time.time() * 1000)


class DiagramRenderer:
    """
    Holds the current drawing and its zoom level.

    render() replaces the drawing for a new source and resets zoom; the
    same source is not rendered twice.
    """

    def __init__(
        self,
        kroki_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        scale: Optional[int] = None,
        background: Optional[str] = None,
        rasterizer: Callable[[str, int, int, str], bytes] = rasterize_svg,
    ):
        self._kroki_url = (kroki_url or settings.KROKI_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.RENDER_TIMEOUT_SECONDS
        self._transport = transport
        self._scale = scale or settings.EXPORT_SCALE
        self._background = background or settings.EXPORT_BACKGROUND
        self._rasterizer = rasterizer
        self._view = DiagramView()
        self._generation = 0

    @property
    def view(self) -> DiagramView:
        return self._view

    async def _render_svg(self, source: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._kroki_url}/mermaid/svg",
                    content=f"{RENDER_DIRECTIVE}\n{source}".encode("utf-8"),
                    headers={"Content-Type": "text/plain"},
                )
        except httpx.HTTPError as exc:
            raise RenderError(f"Renderer unreachable: {exc}") from exc

        if response.status_code != 200:
            raise RenderError(f"Renderer error ({response.status_code}): {response.text[:200]}")
        return response.text

    async def render(self, source: str) -> DiagramView:
        current = self._view
        if current.drawing is not None and current.error is None and current.drawing.source == source:
            return current

        self._generation += 1
        generation = self._generation

        try:
            svg = await self._render_svg(source)
            width, height = svg_dimensions(parse_svg(svg))
            view = DiagramView(drawing=Drawing(source=source, svg=svg, width=width, height=height))
        except RenderError as exc:
            logger.error("Mermaid render error: %s", exc)
            view = DiagramView(error=RENDER_ERROR_MESSAGE)

        if generation == self._generation:
            self._view = view
        return view

    def zoom_in(self) -> float:
        self._view.zoom = round(self._view.zoom + ZOOM_STEP, 2)
        return self._view.zoom

    def zoom_out(self) -> float:
        self._view.zoom = round(max(MIN_ZOOM, self._view.zoom - ZOOM_STEP), 2)
        return self._view.zoom

    def reset_zoom(self) -> float:
        self._view.zoom = 1.0
        return self._view.zoom

    def export_raster(self, drawing: Optional[Drawing] = None) -> ExportedFile:
        """
        Export the drawing as a PNG at EXPORT_SCALE, or as SVG when
        rasterization is blocked.

        Raises:
            DiagramNotReadyError: If nothing has been rendered
        """
        drawing = drawing or self._view.drawing
        if drawing is None:
            raise DiagramNotReadyError("Graphic is not ready yet.")

        width = drawing.width or DEFAULT_WIDTH
        height = drawing.height or DEFAULT_HEIGHT
        document = prepare_export_svg(drawing.svg, width, height, self._background)

        out_width = round(width * self._scale)
        out_height = round(height * self._scale)
        try:
            png = self._rasterizer(document, out_width, out_height, self._background)
        except RasterizationBlockedError as exc:
            logger.error("PNG conversion blocked, falling back to SVG: %s", exc)
            return ExportedFile(
                filename=f"melita-diagram-{_timestamp()}.svg",
                media_type="image/svg+xml",
                content=document.encode("utf-8"),
            )

        logger.info("PNG exported (%dx%d)", out_width, out_height)
        return ExportedFile(
            filename=f"melita-diagram-{_timestamp()}.png",
            media_type="image/png",
            content=png,
        )


diagram_renderer = DiagramRenderer()
