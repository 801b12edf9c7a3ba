import numpy as np
import pytest

from brdf.tables import Grid1D, Grid2D, LinearTransform, TableError


def test_grid2d_round_trip_is_exact(tmp_path, rng):
    table = Grid2D(rng.uniform(size=(5, 7)))
    path = tmp_path / "nested" / "albedo.npz"
    table.save(path)

    loaded = Grid2D.load(path, shape=(5, 7), bounds=[(0.0, 1.0), (0.0, 1.0)])
    assert loaded == table
    assert np.array_equal(loaded.values, table.values)


def test_grid1d_round_trip_is_exact(tmp_path, rng):
    table = Grid1D(rng.uniform(size=9), bounds=[(0.0, 2.0)])
    table.save(tmp_path / "avg.npz")

    loaded = Grid1D.load(tmp_path / "avg.npz")
    assert loaded == table
    assert loaded.bounds.tolist() == [[0.0, 2.0]]


def test_load_mismatch_raises(tmp_path):
    Grid2D(np.zeros((4, 4))).save(tmp_path / "grid.npz")

    with pytest.raises(TableError):
        Grid2D.load(tmp_path / "grid.npz", shape=(4, 5))
    with pytest.raises(TableError):
        Grid2D.load(tmp_path / "grid.npz", bounds=[(0.0, 1.0), (0.0, 2.0)])
    with pytest.raises(TableError):
        Grid1D.load(tmp_path / "grid.npz")


def test_tables_are_read_only():
    table = Grid1D([0.0, 1.0])
    with pytest.raises(ValueError):
        table.values[0] = 2.0


def test_grid_needs_two_samples_per_axis():
    with pytest.raises(TableError):
        Grid2D(np.zeros((1, 4)))
    with pytest.raises(TableError):
        Grid1D(np.zeros((2, 2)))


def test_bilinear_lookup_and_clamping():
    # f(x, y) = x + 2y is reproduced exactly by bilinear interpolation
    table = Grid2D.build(5, 3, lambda x, y: x + 2.0 * y)
    assert table.get(4, 2) == pytest.approx(3.0)
    assert table.sample(0.3, 0.6) == pytest.approx(1.5)
    np.testing.assert_allclose(table.sample(np.array([0.1, 0.9]), 0.25), [0.6, 1.4])

    # no extrapolation outside the stored domain
    assert table.sample(-1.0, 0.5) == pytest.approx(table.sample(0.0, 0.5))
    assert table.sample(2.0, 7.0) == pytest.approx(3.0)


def test_linear_lookup_and_clamping():
    table = Grid1D.build(4, lambda x: 3.0 * x, bounds=[(0.0, 3.0)])
    assert table.sample(1.5) == pytest.approx(4.5)
    assert table.sample(-5.0) == pytest.approx(0.0)
    assert table.sample(10.0) == pytest.approx(9.0)
    assert table.get(3) == pytest.approx(9.0)


def test_index_transform():
    table = Grid1D(np.zeros(11), bounds=[(0.0, 2.0)])
    to_coord = table.index_transform(0)
    assert to_coord(5) == pytest.approx(1.0)
    assert to_coord.inverse()(2.0) == pytest.approx(10.0)
    assert LinearTransform(0, 1, 2, 4)(0.5) == pytest.approx(3.0)
