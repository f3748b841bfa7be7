"""
Deterministic synthetic feature rows for local and CI runs.

Row ``i`` (1-based) of a stub batch of ``size`` rows for ``as_of_date``:

  ticker         KRX:{i:06d}
  name           Stub {i:06d}
  trading_value  (size - i + 1) × 1e8          (strictly descending)
  ret_1d         ((i mod 200) - 100) / 1000
  mom_5d         (base + i) / 1000,  base = ordinal(as_of_date) mod 10000
  vol_20d        (i mod 50) / 100
  value_score    (size - i + 1) / size

The same (date, size) always yields the same rows, so reruns upsert
identical values.
"""

from __future__ import annotations

from datetime import date

from stock_recommender.models.feature import FeatureRecord

STUB_PROVIDER_NAME = "stub"
STUB_MAX_SIZE = 5000


def build_stub_features(
    as_of_date: date,
    size: int,
    ticker_prefix: str = "KRX",
) -> list[FeatureRecord]:
    """Return ``size`` synthetic ``FeatureRecord``s for ``as_of_date``.

    Raises:
        ValueError: If ``size`` is outside ``[1, 5000]``.
    """
    if not 1 <= size <= STUB_MAX_SIZE:
        raise ValueError(f"stub size must be in [1, {STUB_MAX_SIZE}], got {size}.")

    base = float(as_of_date.toordinal() % 10_000)
    records: list[FeatureRecord] = []
    for i in range(1, size + 1):
        remaining = size - i + 1
        records.append(
            FeatureRecord(
                as_of_date=as_of_date,
                ticker=f"{ticker_prefix}:{i:06d}",
                name=f"Stub {i:06d}",
                trading_value=remaining * 1.0e8,
                features={
                    "ret_1d": ((i % 200) - 100) / 1000,
                    "mom_5d": (base + i) / 1000,
                    "vol_20d": (i % 50) / 100,
                    "value_score": remaining / size,
                },
            )
        )
    return records
