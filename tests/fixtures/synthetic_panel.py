"""
Synthetic survey data for tests.

Deterministic generators with fixed seeds. Survey frames are built with
source-role column names and renamed to a country's raw names with
``to_raw``, so the same generator serves every country configuration.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from src.data.countries import CountryConfig


def to_raw(frame: pd.DataFrame, country: CountryConfig) -> pd.DataFrame:
    """Rename source-role columns to the country's raw column names."""
    raw_names = {role: raw for raw, role in country.columns.items()}
    return frame.rename(columns=raw_names)


def make_survey(
    n_households: int = 60,
    years: tuple[int, ...] = (2019, 2020),
    attrition: float = 0.15,
    seed: int = 42,
) -> pd.DataFrame:
    """Household survey with role-named columns, one row per person-year.

    Household members keep their ids across years; each member-year after the
    first drops out with probability ``attrition``. Member 0 is the head,
    member 1 the spouse. Employment type codes follow the harmonized
    convention (1 salaried, 2 unpaid, 3 employer, 4 self-employed).
    """
    rng = np.random.default_rng(seed)
    rows = []
    for h in range(n_households):
        size = int(rng.integers(1, 5))
        urban = int(rng.integers(0, 2))
        for m in range(size):
            pid = f"{h:04d}{m:02d}"
            male = int(rng.integers(0, 2))
            age = int(rng.integers(15, 80)) if m < 2 else int(rng.integers(5, 40))
            for i, year in enumerate(years):
                if i > 0 and rng.random() < attrition:
                    continue
                lstatus = int(rng.choice([1, 2, 3], p=[0.6, 0.1, 0.3]))
                employed = lstatus == 1
                empstat = int(rng.choice([1, 2, 3, 4], p=[0.5, 0.1, 0.1, 0.3])) if employed else np.nan
                rows.append({
                    "hhid": f"H{h:04d}",
                    "pid": pid,
                    "year": year,
                    "weight": float(rng.uniform(50, 150)),
                    "welfare": float(rng.lognormal(8, 1)),
                    "welfare_ppp": float(rng.lognormal(7, 1)),
                    "lstatus": lstatus,
                    "empstat": empstat,
                    "occup": int(rng.choice([110, 1120, 2310, 3250, 4110, 5120, 6111, 7112, 8121, 9111]))
                    if employed else np.nan,
                    "industry": int(rng.integers(1, 11)) if employed else np.nan,
                    "contract": int(rng.integers(0, 2)) if employed else np.nan,
                    "socialsec": int(rng.integers(0, 2)) if employed else np.nan,
                    "healthins": int(rng.integers(0, 2)) if employed else np.nan,
                    "age": age + i,
                    "male": male,
                    "educat7": int(rng.integers(1, 8)),
                    "urban": urban,
                    "relationharm": 1 if m == 0 else (2 if m == 1 else int(rng.integers(3, 7))),
                    "hourly_wage": float(rng.uniform(2, 30)) if employed else np.nan,
                    "whours": float(rng.uniform(10, 60)) if employed else np.nan,
                    "labor_income": float(rng.uniform(200, 3000)) if employed else np.nan,
                })
    return pd.DataFrame(rows)


def make_cpi(
    country_codes: tuple[str, ...] = ("PER",),
    years: tuple[int, ...] = (2019, 2020, 2021),
    base: float = 100.0,
    monthly_growth: float = 0.003,
) -> pd.DataFrame:
    """Monthly CPI table growing at a constant rate from ``base``."""
    rows = []
    for code in country_codes:
        step = 0
        for year in years:
            for month in range(1, 13):
                rows.append({
                    "country_code": code,
                    "year": year,
                    "month": month,
                    "cpi": base * (1 + monthly_growth) ** step,
                })
                step += 1
    return pd.DataFrame(rows)


def make_ppp(country_codes: tuple[str, ...] = ("PER",), ppp: float = 1.8, unit: float = 1.0) -> pd.DataFrame:
    return pd.DataFrame({
        "country_code": list(country_codes),
        "ppp_conversion_2021": ppp,
        "currency_unit_adjustment": unit,
    })


def three_person_survey(t0: int = 2019, t1: int = 2020) -> pd.DataFrame:
    """Person 1 in both years (employed then unemployed), person 2 only at t0,
    person 3 only at t1. Everyone heads their own household, all weights 1."""
    base = {
        "weight": 1.0,
        "welfare_ppp": 1000.0,
        "age": 40,
        "male": 1,
        "relationharm": 1,
    }
    rows = [
        {**base, "hhid": "H1", "pid": "P1", "year": t0, "lstatus": 1, "empstat": 1, "occup": 2310},
        {**base, "hhid": "H1", "pid": "P1", "year": t1, "lstatus": 2, "empstat": np.nan, "occup": np.nan},
        {**base, "hhid": "H2", "pid": "P2", "year": t0, "lstatus": 1, "empstat": 4, "occup": 9111},
        {**base, "hhid": "H3", "pid": "P3", "year": t1, "lstatus": 3, "empstat": np.nan, "occup": np.nan},
    ]
    return pd.DataFrame(rows)
