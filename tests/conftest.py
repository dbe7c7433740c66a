"""Shared fixtures: a small synthetic acoustic-trawl survey."""

from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from atboot.aggregation import bin_acoustics
from atboot.simulation import build_class_problems
from atboot.survey_io import preprocess_survey_data, read_survey_files

LON0 = -165.0
LAT0 = 57.0
TARGET_SPECIES = 21740
OTHER_SPECIES = 30060
N_TARGET_AGES = 5  # ages 1..5; age 0 is labelled "00"


def write_synthetic_survey(surveydir: Path, seed: int = 0) -> Path:
    """Write the raw files of a six-transect survey into ``surveydir``."""
    rng = np.random.default_rng(seed)
    surveydir.mkdir(parents=True, exist_ok=True)

    rows = []
    lats = np.arange(LAT0 - 0.5, LAT0 + 0.5, 0.01)
    for t, dlon in enumerate(np.linspace(-0.8, 0.8, 6), start=1):
        for k, lat in enumerate(lats):
            lon = LON0 + dlon
            hot = np.exp(-((dlon / 0.5) ** 2 + ((lat - LAT0) / 0.4) ** 2))
            nasc = (20.0 + 400.0 * hot) * rng.gamma(2.0, 0.5)
            if rng.random() < 0.1:
                nasc = 0.0
            rows.append((t, "SS1", lon, lat, nasc))
            if k % 2 == 0:
                rows.append((t, "SS2", lon, lat, 0.3 * nasc * rng.gamma(2.0, 0.5)))
    # calibration line, excluded from the analysis
    for lat in np.arange(LAT0 - 0.1, LAT0 + 0.1, 0.02):
        rows.append((201, "SS1", LON0, lat, 5000.0))
    acoustics = pd.DataFrame(rows, columns=["transect", "class", "lon", "lat", "nasc"])
    acoustics.to_csv(surveydir / "acoustics.csv", index=False)

    trawl_lon = LON0 + np.array([-0.7, -0.4, -0.1, 0.2, 0.5, 0.7, -0.5, 0.4])
    trawl_lat = LAT0 + np.array([-0.3, 0.2, -0.1, 0.3, -0.2, 0.1, -0.4, 0.4])
    trawls = pd.DataFrame({
        "event_id": [f"T{k}" for k in range(1, 9)],
        "lon": trawl_lon,
        "lat": trawl_lat,
    })
    trawls.to_csv(surveydir / "trawl_locations.csv", index=False)

    scaling = []
    for k, event in enumerate(trawls["event_id"]):
        classes = ["SS2"] if k == 7 else ["SS1", "SS2"]
        for cls in classes:
            for length in np.clip(rng.normal(45.0, 8.0, size=20), 15.0, 69.0):
                scaling.append((event, cls, TARGET_SPECIES, round(float(length), 1), float(rng.uniform(0.5, 2.0))))
            for length in rng.uniform(15.0, 25.0, size=5):
                scaling.append((event, cls, OTHER_SPECIES, round(float(length), 1), 1.0))
    pd.DataFrame(
        scaling, columns=["event_id", "class", "species_code", "primary_length", "w"]
    ).to_csv(surveydir / "scaling.csv", index=False)

    lengths = rng.uniform(10.0, 70.0, size=400)
    ages = np.minimum((lengths - 10.0) // 11.0, 5).astype(int)
    pd.DataFrame({"length": np.round(lengths, 1), "age": ages}).to_csv(surveydir / "age_length.csv", index=False)

    lw_lengths = rng.uniform(20.0, 70.0, size=150)
    weights = 1e-5 * lw_lengths ** 3 * rng.lognormal(0.0, 0.1, size=150)
    pd.DataFrame({"length": np.round(lw_lengths, 1), "weight": weights}).to_csv(
        surveydir / "length_weight.csv", index=False
    )
    return surveydir


@pytest.fixture
def raw_survey(tmp_path: Path) -> Path:
    """Fresh raw survey directory, safe to modify."""
    return write_synthetic_survey(tmp_path / "survey")


@pytest.fixture(scope="session")
def survey(tmp_path_factory):
    """Survey preprocessed at 10 km, shared read-only across tests."""
    surveydir = write_synthetic_survey(tmp_path_factory.mktemp("shared") / "survey")
    preprocess_survey_data(surveydir, dx=10.0)
    return read_survey_files(surveydir)


@pytest.fixture(scope="session")
def binned(survey):
    return bin_acoustics(survey.acoustics, ["SS1", "SS2"], 10.0)


@pytest.fixture(scope="session")
def problems(survey, binned):
    """SS1 and SS2 simulation problems with a cheap distribution search."""
    return build_class_problems(
        binned, ["SS1", "SS2"], survey.domain_coords, rng=np.random.default_rng(7), nfit=5
    )
