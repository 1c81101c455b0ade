from __future__ import annotations

import pytest

from mapeditor.domain.mutations import (
    LATBAND_LNG_BUFFER,
    MinVertexViolation,
    GeometryValidationError,
    OutOfBoundsError,
    VertexKey,
    adjust_band_bounds,
    append_vertex,
    close_ring,
    decimate,
    decimate_all,
    delete_vertex,
    delete_vertex_in,
    densify,
    densify_all,
    insert_midpoint,
    insert_midpoint_in,
    latitude_band,
    move_vertex,
    open_ring,
    rectangle_from_corners,
    translate,
    validate_coordinates,
)

SQUARE = [(0.0, 0.0), (0.0, 10.0), (10.0, 10.0), (10.0, 0.0)]
TRIANGLE = [(0.0, 0.0), (5.0, 5.0), (0.0, 10.0)]


def regular_ring(n: int):
    return [(float(i), float(i * 2 % 7)) for i in range(n)]


def edge_deltas(ring):
    """Flat lat/lng offsets between consecutive vertices, closing edge included."""
    deltas = []
    for (lat_a, lng_a), (lat_b, lng_b) in zip(ring, ring[1:] + ring[:1]):
        deltas.extend([lat_b - lat_a, lng_b - lng_a])
    return deltas


class TestVertexEdits:

    def test_insert_midpoint_after_index(self):
        result = insert_midpoint(SQUARE, 1)
        assert len(result) == 5
        assert result[2] == (5.0, 10.0)
        assert SQUARE == [(0.0, 0.0), (0.0, 10.0), (10.0, 10.0), (10.0, 0.0)]

    def test_insert_midpoint_on_closing_edge(self):
        result = insert_midpoint(SQUARE, 3)
        assert result[-1] == (5.0, 0.0)

    def test_delete_vertex(self):
        result = delete_vertex(SQUARE, 0)
        assert result == SQUARE[1:]

    def test_delete_vertex_keeps_three(self):
        with pytest.raises(MinVertexViolation):
            delete_vertex(TRIANGLE, 0)

    def test_delete_vertex_in_applies_floor_per_part(self):
        multi = [list(SQUARE), list(TRIANGLE)]
        result = delete_vertex_in(multi, VertexKey(0, 2))
        assert len(result[0]) == 3 and len(result[1]) == 3
        with pytest.raises(MinVertexViolation):
            delete_vertex_in(multi, VertexKey(1, 0))

    def test_move_vertex_in_multipolygon(self):
        multi = [list(SQUARE), list(TRIANGLE)]
        result = move_vertex(multi, VertexKey(1, 1), (6.0, 6.0))
        assert result[1][1] == (6.0, 6.0)
        assert result[0] == SQUARE
        assert multi[1][1] == (5.0, 5.0)

    def test_move_vertex_out_of_bounds(self):
        with pytest.raises(OutOfBoundsError):
            move_vertex(SQUARE, VertexKey(0, 0), (86.0, 0.0))

    def test_append_vertex_checks_bounds(self):
        assert append_vertex(TRIANGLE, (1, 1))[-1] == (1.0, 1.0)
        with pytest.raises(OutOfBoundsError):
            append_vertex(TRIANGLE, (0, 181))

    def test_insert_midpoint_in_part(self):
        result = insert_midpoint_in([list(SQUARE), list(TRIANGLE)], 1, 0)
        assert result[1][1] == (2.5, 2.5)


class TestDensifyDecimate:

    def test_densify_doubles(self):
        result = densify(SQUARE)
        assert len(result) == 8
        assert result[0::2] == SQUARE
        assert result[1] == (0.0, 5.0)

    @pytest.mark.parametrize("n", range(4, 21))
    def test_decimate_undoes_densify(self, n):
        ring = regular_ring(n)
        assert decimate(densify(ring)) == ring

    def test_decimate_keeps_even_indices(self):
        ring = regular_ring(7)
        assert decimate(ring) == [ring[0], ring[2], ring[4], ring[6]]

    def test_decimate_refuses_below_three(self):
        with pytest.raises(MinVertexViolation):
            decimate(regular_ring(4))

    def test_auto_densify_skips_dense_rings(self):
        ring = regular_ring(10)
        assert densify(ring, skip_at=10) == ring
        assert len(densify(regular_ring(9), skip_at=10)) == 18

    def test_explicit_densify_refuses_large_rings(self):
        with pytest.raises(GeometryValidationError):
            densify(regular_ring(100))

    def test_densify_all_guard_uses_any_part(self):
        coords = [regular_ring(4), regular_ring(12)]
        assert densify_all(coords, skip_at=10) == coords
        assert [len(p) for p in densify_all(coords)] == [8, 24]

    def test_decimate_all(self):
        assert [len(p) for p in decimate_all([regular_ring(8), regular_ring(6)])] == [4, 3]


class TestTranslate:

    def test_translate_moves_all_parts(self):
        result = translate([list(SQUARE), list(TRIANGLE)], 1.0, -2.0)
        assert result[0][0] == (1.0, -2.0)
        assert result[1][2] == (1.0, 8.0)

    def test_translate_preserves_shape(self):
        ring = [(12.5, -40.25), (14.0, -38.0), (11.75, -36.5), (10.0, -39.0)]
        moved = translate(ring, 3.3, -7.7)
        assert edge_deltas(moved) == pytest.approx(edge_deltas(ring))
        assert moved[0] == pytest.approx((15.8, -47.95))

    def test_translate_preserves_shape_of_every_part(self):
        parts = [list(SQUARE), list(TRIANGLE)]
        moved = translate(parts, -4.2, 17.9)
        assert len(moved) == 2
        for before, after in zip(parts, moved):
            assert edge_deltas(after) == pytest.approx(edge_deltas(before))

    def test_translate_out_of_bounds_leaves_input(self):
        original = list(SQUARE)
        with pytest.raises(OutOfBoundsError):
            translate(original, 80.0, 0.0)
        assert original == SQUARE


class TestShapes:

    def test_rectangle_from_corners(self):
        assert rectangle_from_corners((1, 2), (3, 4)) == [(1.0, 2.0), (1.0, 4.0), (3.0, 4.0), (3.0, 2.0)]

    def test_latitude_band_is_closed_five_vertices(self):
        band = latitude_band(3, -3)
        assert len(band) == 5
        assert band[0] == band[-1]
        lngs = {lng for _, lng in band}
        assert lngs == {-180 + LATBAND_LNG_BUFFER, 180 - LATBAND_LNG_BUFFER}
        assert {lat for lat, _ in band} == {3.0, -3.0}

    def test_latitude_band_clamps(self):
        band = latitude_band(89, -89)
        assert max(lat for lat, _ in band) == 85.0
        assert min(lat for lat, _ in band) == -85.0

    def test_adjust_band_keeps_gap(self):
        upper, lower = adjust_band_bounds(3, -3, upper_delta=-10)
        assert upper == pytest.approx(-2.5)
        assert lower == -3
        upper, lower = adjust_band_bounds(84, -3, upper_delta=5)
        assert upper == 85

    def test_close_and_open_ring(self):
        closed = close_ring(TRIANGLE)
        assert closed[-1] == closed[0] and len(closed) == 4
        assert close_ring(closed) == closed
        assert open_ring(closed) == TRIANGLE


class TestValidate:

    def test_valid_polygon(self):
        assert validate_coordinates([[0, 0], [0, 1], [1, 1]]) == [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0)]

    def test_closed_ring_needs_three_distinct(self):
        with pytest.raises(MinVertexViolation):
            validate_coordinates([(0, 0), (0, 1), (0, 0)])

    def test_out_of_bounds(self):
        with pytest.raises(OutOfBoundsError):
            validate_coordinates([(0, 0), (0, 1), (86, 1)])

    def test_empty(self):
        with pytest.raises(MinVertexViolation):
            validate_coordinates([])
