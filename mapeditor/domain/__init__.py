"""
Domain models package.

Geographic primitives, projection, viewport bridge, polygon mutations and the
render adapter. Nothing in this package depends on Flask.
"""

from mapeditor.domain.geo import Annotation, BoundingBox, GeoPoint
from mapeditor.domain.polygons import AnnotatedPolygon, AnnotationRule, PolygonWithHoles, SpeciesRef
from mapeditor.domain.viewport import CoordinateBridge, ViewportSize, ViewportState, ViewportTracker

__all__ = [
    'AnnotatedPolygon',
    'Annotation',
    'AnnotationRule',
    'BoundingBox',
    'CoordinateBridge',
    'GeoPoint',
    'PolygonWithHoles',
    'SpeciesRef',
    'ViewportSize',
    'ViewportState',
    'ViewportTracker',
]
