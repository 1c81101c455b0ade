from __future__ import annotations

import io
import math
from typing import List, Sequence, Tuple

from PIL import Image, ImageChops, ImageColor, ImageDraw

from mapeditor.domain.geo import GeoPoint
from mapeditor.domain.polygons import AnnotatedPolygon
from mapeditor.domain.projection import geo_to_world, world_to_geo
from mapeditor.domain.render import DrawInstruction, render_polygon
from mapeditor.domain.viewport import MAX_ZOOM, CoordinateBridge, ViewportSize, ViewportState

BACKGROUND_COLOUR = "#f8fafc"
PREVIEW_PADDING = 0.1
MAX_PREVIEW_SIZE = 2048
PREVIEW_PALETTE_SIZE = 64


class PreviewError(Exception):
    """Raised when a preview cannot be rendered."""


def fit_viewport(polygon: AnnotatedPolygon, size: ViewportSize, padding: float = PREVIEW_PADDING) -> ViewportState:
    """Largest integer zoom at which the polygon fits inside ``size`` with padding."""
    points = [point for part in polygon.parts for point in part]
    if not points:
        raise PreviewError(f"Polygon {polygon.id} has no vertices")

    world = [geo_to_world(lat, lng, 0) for lat, lng in points]
    xs = [x for x, _ in world]
    ys = [y for _, y in world]
    center = world_to_geo((min(xs) + max(xs)) / 2, (min(ys) + max(ys)) / 2, 0)

    span_x = max(xs) - min(xs)
    span_y = max(ys) - min(ys)
    usable_w = size.width * (1 - 2 * padding)
    usable_h = size.height * (1 - 2 * padding)
    zoom = MAX_ZOOM
    if span_x > 0 or span_y > 0:
        ratios = []
        if span_x > 0:
            ratios.append(usable_w / span_x)
        if span_y > 0:
            ratios.append(usable_h / span_y)
        zoom = max(0.0, min(MAX_ZOOM, math.floor(math.log2(min(ratios)))))
    return ViewportState(center=GeoPoint(center.lat, center.lng), zoom=float(zoom))


def _ring_mask(rings: Sequence[Sequence[Tuple[float, float]]], size: ViewportSize) -> Image.Image:
    """Even-odd coverage mask of a set of pixel rings."""
    mask = Image.new("L", (size.width, size.height), 0)
    for ring in rings:
        if len(ring) < 3:
            continue
        layer = Image.new("L", (size.width, size.height), 0)
        ImageDraw.Draw(layer).polygon([tuple(point) for point in ring], fill=255)
        mask = ImageChops.difference(mask, layer)
    return mask


def rasterise(instructions: Sequence[DrawInstruction], size: ViewportSize) -> Image.Image:
    """Paint draw instructions onto an RGB image."""
    image = Image.new("RGB", (size.width, size.height), BACKGROUND_COLOUR)
    for instruction in instructions:
        fill = ImageColor.getrgb(instruction.colours.fill)
        stroke = ImageColor.getrgb(instruction.colours.stroke)
        for rings in instruction.paths:
            mask = _ring_mask(rings, size)
            alpha = mask.point(lambda value: int(value * instruction.fill_opacity))
            image.paste(Image.new("RGB", image.size, fill), (0, 0), alpha)

            outlines: List[Sequence[Tuple[float, float]]] = list(rings)
            if instruction.kind == "inverted":
                outlines = outlines[1:]
            draw = ImageDraw.Draw(image)
            for ring in outlines:
                if len(ring) < 2:
                    continue
                points = [tuple(point) for point in ring]
                if instruction.closed:
                    points.append(points[0])
                draw.line(points, fill=stroke, width=max(1, round(instruction.stroke_width)))
    return image


def encode_png(image: Image.Image, dpi: int = 72) -> bytes:
    """Flat-shaded previews quantise to a small palette without visible loss."""
    paletted = image.convert("RGB").quantize(
        colors=PREVIEW_PALETTE_SIZE,
        method=Image.Quantize.MEDIANCUT,
        dither=Image.Dither.NONE,
    )
    buffer = io.BytesIO()
    paletted.save(buffer, format="PNG", optimize=True, dpi=(dpi, dpi))
    return buffer.getvalue()


class PreviewService:
    """Render PNG thumbnails of saved polygons."""

    def render_png(self, polygon: AnnotatedPolygon, width: int = 256, height: int = 256, dpi: int = 72) -> bytes:
        if not (0 < width <= MAX_PREVIEW_SIZE and 0 < height <= MAX_PREVIEW_SIZE):
            raise PreviewError(f"Preview size must be within 1..{MAX_PREVIEW_SIZE} pixels")
        size = ViewportSize(width, height)
        bridge = CoordinateBridge(viewport=fit_viewport(polygon, size), size=size)
        image = rasterise([render_polygon(polygon, bridge)], size)
        return encode_png(image, dpi)
