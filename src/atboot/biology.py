"""Biological conversion tables: target strength, age-length key, length-weight.

These convert backscatter apportioned to measured fish into numbers and
biomass by age, and provide the row resampling used to propagate biological
sampling error through the bootstrap.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

# Age label of fish outside the assessed stock: other species and age-0 fish
NON_TARGET_AGE = "00"


def age_label(age) -> str:
    return f"{int(age):02d}"


def sigma_bs(length, slope: float = 20.0, intercept: float = -66.0, delta: float = 0.0) -> np.ndarray:
    """
    Backscattering cross-section (m²) from length (cm):
    TS = slope · log10(L) + intercept + delta, σ_bs = 10^(TS/10).
    """
    length = np.asarray(length, dtype=float)
    ts = slope * np.log10(length) + intercept + delta
    return 10.0 ** (ts / 10.0)


def target_age_classes(age_length: pd.DataFrame) -> List[str]:
    """Sorted age labels present in the age-length table, without the non-target label."""
    labels = sorted({age_label(a) for a in age_length["age"]})
    return [a for a in labels if a != NON_TARGET_AGE]


def age_length_key(age_length: pd.DataFrame, ages: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Proportion at age given length.

    Lengths are rounded to whole centimetres. Proportions are taken over every
    aged fish at a length, so selecting ``ages`` drops the share of the other
    ages (age 0 in particular) rather than redistributing it.

    Parameters
    ----------
    age_length : pd.DataFrame
        Specimen rows with length and age.
    ages : sequence of str, optional
        Columns to keep, in order; ages missing from the table get zero columns.

    Returns
    -------
    pd.DataFrame
        Index: length (int cm), columns: age labels.
    """
    if age_length.empty:
        raise ValueError("Age-length table is empty.")
    df = pd.DataFrame({
        "length": np.round(age_length["length"].to_numpy(dtype=float)).astype(int),
        "age": [age_label(a) for a in age_length["age"]],
    })
    key = pd.crosstab(df["length"], df["age"], normalize="index").sort_index()
    if ages is not None:
        key = key.reindex(columns=list(ages), fill_value=0.0)
    return key


def key_for_lengths(key: pd.DataFrame, lengths: Iterable) -> np.ndarray:
    """
    Age proportions for each requested length, using the nearest length in the key
    where the exact length was not aged.
    """
    lengths = np.round(np.asarray(list(lengths), dtype=float)).astype(int)
    return key.reindex(lengths, method="nearest").to_numpy(dtype=float)


@dataclass(frozen=True)
class LengthWeight:
    """Allometric weight-at-length W = a · L^b (kg, cm)."""
    a: float
    b: float

    def __call__(self, length) -> np.ndarray:
        return self.a * np.asarray(length, dtype=float) ** self.b


def fit_length_weight(length_weight: pd.DataFrame) -> LengthWeight:
    """Least-squares fit of log W = log a + b log L."""
    if len(length_weight) < 2 or length_weight["length"].nunique() < 2:
        raise ValueError("Length-weight fit needs at least two distinct lengths.")
    log_l = np.log(length_weight["length"].to_numpy(dtype=float))
    log_w = np.log(length_weight["weight"].to_numpy(dtype=float))
    b, log_a = np.polyfit(log_l, log_w, 1)
    return LengthWeight(a=float(np.exp(log_a)), b=float(b))


def resample_rows(df: pd.DataFrame, rng: np.random.Generator) -> pd.DataFrame:
    """Bootstrap resample of table rows with replacement."""
    idx = rng.integers(0, len(df), size=len(df))
    return df.iloc[idx].reset_index(drop=True)


def resample_within(df: pd.DataFrame, keys: Sequence[str], rng: np.random.Generator) -> pd.DataFrame:
    """Bootstrap resample of rows within each group defined by ``keys``."""
    positions = []
    for _, idx in df.groupby(list(keys), sort=True).indices.items():
        positions.append(idx[rng.integers(0, len(idx), size=len(idx))])
    if not positions:
        return df.iloc[0:0]
    return df.iloc[np.concatenate(positions)].reset_index(drop=True)
