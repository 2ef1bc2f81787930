"""Tests for the bilinear interpolator and the layered GridCube."""

import numpy as np
import pytest
from ratevol.grid import BilinearInterpolator, GridCube


@pytest.fixture
def cube():
    """3 option times x 2 swap lengths x 2 layers, filled with known planes."""
    times = [0.5, 1.0, 2.0]
    lengths = [2.0, 5.0]
    g = GridCube(["6M", "1Y", "2Y"], ["2Y", "5Y"], times, lengths, 2)
    t, l = np.meshgrid(times, lengths, indexing="ij")
    g.set_layer(0, 0.1 + 0.02 * t + 0.01 * l)   # bilinear, reproduced exactly
    g.set_layer(1, t * l)
    return g


# ---------------------------------------------------------------------------
# BilinearInterpolator
# ---------------------------------------------------------------------------
class TestBilinearInterpolator:
    def test_exact_on_nodes(self):
        z = np.array([[1.0, 2.0], [3.0, 5.0]])
        f = BilinearInterpolator([0.0, 1.0], [0.0, 1.0], z)
        for i, x in enumerate([0.0, 1.0]):
            for j, y in enumerate([0.0, 1.0]):
                assert f(x, y) == z[i, j]

    def test_midpoint(self):
        z = np.array([[1.0, 2.0], [3.0, 5.0]])
        f = BilinearInterpolator([0.0, 1.0], [0.0, 1.0], z)
        assert f(0.5, 0.5) == pytest.approx(2.75)

    def test_out_of_range_raises_without_extrapolation(self):
        f = BilinearInterpolator([0.0, 1.0], [0.0, 1.0], np.eye(2))
        with pytest.raises(ValueError, match="outside grid range"):
            f(1.5, 0.5)

    def test_extrapolation_is_linear(self):
        """Outside the grid the edge segment is extended, not held flat."""
        z = np.array([[0.0, 0.0], [1.0, 1.0]])
        f = BilinearInterpolator([0.0, 1.0], [0.0, 1.0], z, extrapolate=True)
        assert f(2.0, 0.5) == pytest.approx(2.0)
        assert f(-1.0, 0.5) == pytest.approx(-1.0)

    def test_single_point_axis_is_constant(self):
        f = BilinearInterpolator([1.0], [0.0, 2.0], [[1.0, 3.0]], extrapolate=True)
        assert f(5.0, 1.0) == pytest.approx(2.0)

    def test_shape_mismatch_raises(self):
        with pytest.raises(ValueError, match="shape"):
            BilinearInterpolator([0.0, 1.0], [0.0, 1.0, 2.0], np.zeros((2, 2)))


# ---------------------------------------------------------------------------
# GridCube construction
# ---------------------------------------------------------------------------
class TestGridCubeConstruction:
    def test_shape_and_layers(self, cube):
        assert cube.shape == (3, 2)
        assert cube.n_layers == 2
        assert all(p.shape == (3, 2) for p in cube.points)

    def test_non_increasing_axis_raises(self):
        with pytest.raises(ValueError, match="strictly increasing"):
            GridCube(["a", "b"], ["x"], [1.0, 1.0], [1.0], 1)

    def test_label_mismatch_raises(self):
        with pytest.raises(ValueError, match="option dates"):
            GridCube(["a"], ["x"], [1.0, 2.0], [1.0], 1)

    def test_set_layer_dimension_check(self, cube):
        with pytest.raises(ValueError, match="shape"):
            cube.set_layer(0, np.zeros((2, 2)))


# ---------------------------------------------------------------------------
# GridCube reads
# ---------------------------------------------------------------------------
class TestGridCubeEvaluation:
    def test_set_element_round_trip(self, cube):
        """Writing a node and evaluating there returns the value exactly."""
        times, lengths = cube.option_times, cube.swap_lengths
        value = 0.123456789
        for k in range(cube.n_layers):
            for i, t in enumerate(times):
                for j, l in enumerate(lengths):
                    cube.set_element(k, i, j, value + i + 10 * j + 100 * k)
                    assert cube(t, l)[k] == value + i + 10 * j + 100 * k

    def test_set_element_rejects_out_of_range(self, cube):
        n_rows, n_cols = cube.shape
        for idx in [(0, -1, 0), (0, 0, -1), (-1, 0, 0),
                    (0, n_rows, 0), (0, 0, n_cols), (cube.n_layers, 0, 0)]:
            with pytest.raises(IndexError, match="outside"):
                cube.set_element(*idx, 1.0)
        assert cube(cube.option_times[-1], cube.swap_lengths[0])[0] != 1.0

    def test_bilinear_plane_reproduced(self, cube):
        assert cube(0.75, 3.5)[0] == pytest.approx(0.1 + 0.02 * 0.75 + 0.01 * 3.5)

    def test_writes_mark_stale(self, cube):
        cube(1.0, 2.0)
        assert cube.is_fresh
        cube.set_element(0, 0, 0, 1.0)
        assert not cube.is_fresh
        cube.ensure_fresh()
        assert cube.is_fresh

    def test_extrapolation_disabled_raises(self):
        g = GridCube(["a", "b"], ["x", "y"], [1.0, 2.0], [1.0, 2.0], 1, extrapolation=False)
        with pytest.raises(ValueError):
            g(3.0, 1.5)

    def test_browse_layout(self, cube):
        table = cube.browse()
        assert table.shape == (6, 4)
        # row for (1.0, 5.0) is option row 1, swap column 1
        row = table[1 * 2 + 1]
        assert row[0] == 1.0 and row[1] == 5.0
        assert row[3] == pytest.approx(5.0)


# ---------------------------------------------------------------------------
# GridCube growth
# ---------------------------------------------------------------------------
class TestGridCubeExpansion:
    def test_expand_keeps_surface(self, cube):
        before = cube(1.5, 3.0)
        row, col = cube.expand_layers(option_date="18M", option_time=1.5,
                                      swap_tenor="3Y", swap_length=3.0)
        assert cube.shape == (4, 3)
        assert (row, col) == (2, 1)
        assert cube.option_dates[2] == "18M"
        assert cube.swap_tenors[1] == "3Y"
        np.testing.assert_allclose(cube(1.5, 3.0), before, rtol=0, atol=1e-14)

    def test_expand_existing_node_is_noop(self, cube):
        row, col = cube.expand_layers(option_time=1.0, swap_length=5.0)
        assert (row, col) == (1, 1)
        assert cube.shape == (3, 2)

    def test_expand_beyond_grid_extrapolates(self, cube):
        cube.expand_layers(option_date="5Y", option_time=5.0)
        assert cube.option_times[-1] == 5.0
        assert cube(5.0, 2.0)[0] == pytest.approx(0.1 + 0.02 * 5.0 + 0.01 * 2.0)

    def test_set_point_adds_node(self, cube):
        cube.set_point("3M", "10Y", 0.25, 10.0, [7.0, 8.0])
        assert cube.shape == (4, 3)
        np.testing.assert_array_equal(cube(0.25, 10.0), [7.0, 8.0])

    def test_set_point_wrong_length_raises(self, cube):
        with pytest.raises(ValueError, match="layers"):
            cube.set_point("3M", "10Y", 0.25, 10.0, [7.0])

    def test_copy_is_independent(self, cube):
        other = cube.copy()
        other.set_element(0, 0, 0, -1.0)
        assert cube.points[0][0, 0] != -1.0
