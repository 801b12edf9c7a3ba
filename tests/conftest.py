import numpy as np
import pytest

from brdf.materials import CONDUCTOR_ALBEDO, CONDUCTOR_AVG, CoupledTables
from brdf.precompute_albedo import bake_specular_albedo
from brdf.precompute_avg_albedo import bake_avg_albedo

TABLE_SIZE = 24
TABLE_SAMPLES = 16000
SEED = 20240611


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture(scope="session")
def conductor_albedo():
    return bake_specular_albedo(TABLE_SIZE, TABLE_SIZE, sample_count=TABLE_SAMPLES, seed=SEED)


@pytest.fixture(scope="session")
def conductor_avg(conductor_albedo):
    return bake_avg_albedo(conductor_albedo)


@pytest.fixture(scope="session")
def conductor_tables(conductor_albedo, conductor_avg):
    return CoupledTables.from_tables(conductor_albedo, conductor_avg, alpha_size=32, u_size=256)


@pytest.fixture(scope="session")
def dielectric_tables():
    albedo = bake_specular_albedo(16, 16, sample_count=8000, include_fresnel=True, seed=SEED)
    return CoupledTables.from_tables(albedo, bake_avg_albedo(albedo), alpha_size=16, u_size=128)


@pytest.fixture(scope="session")
def table_dir(tmp_path_factory, conductor_albedo, conductor_avg):
    """Conductor tables written under the file names the loaders expect."""
    directory = tmp_path_factory.mktemp("tables")
    conductor_albedo.save(directory / CONDUCTOR_ALBEDO)
    conductor_avg.save(directory / CONDUCTOR_AVG)
    return directory
