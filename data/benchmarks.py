from dataclasses import fields
from pathlib import Path
from types import MappingProxyType

import click
import polars as pl

from data.models import EM_LEVELS, SpecialtyBenchmark

REFERENCE_DIR = Path(__file__).parent / "reference"
DEFAULT_BENCHMARKS_FILE = REFERENCE_DIR / "specialty_benchmarks.csv"
DEFAULT_SPECIALTY = "Internal Medicine"

# CMS provider type -> benchmark specialty name
SPECIALTY_ALIASES = {
    "Family Practice": "Family Medicine",
    "General Practice": "Family Medicine",
    "Orthopedic Surgery": "Orthopedics",
    "Obstetrics & Gynecology": "OB/GYN",
    "Obstetrics/Gynecology": "OB/GYN",
    "Pulmonary Disease": "Pulmonology",
    "Hematology-Oncology": "Hematology/Oncology",
    "Allergy/ Immunology": "Allergy/Immunology",
    "Physical Medicine and Rehabilitation": "Physical Medicine",
    "Critical Care (Intensivists)": "Critical Care",
    # NPPES taxonomy descriptions
    "Cardiovascular Disease": "Cardiology",
    "Internal Medicine, Cardiovascular Disease": "Cardiology",
    "Internal Medicine, Gastroenterology": "Gastroenterology",
    "Internal Medicine, Endocrinology, Diabetes & Metabolism": "Endocrinology",
    "Internal Medicine, Nephrology": "Nephrology",
    "Internal Medicine, Pulmonary Disease": "Pulmonology",
    "Internal Medicine, Rheumatology": "Rheumatology",
    "Internal Medicine, Geriatric Medicine": "Geriatric Medicine",
    "Psychiatry & Neurology, Psychiatry": "Psychiatry",
    "Psychiatry & Neurology, Neurology": "Neurology",
}

BENCHMARK_FIELDS = [f.name for f in fields(SpecialtyBenchmark)]


class BenchmarkStore:
    """Read-only specialty -> benchmark lookup, built once and shared by every scan."""

    def __init__(self, benchmarks: dict[str, SpecialtyBenchmark],
                 default_specialty: str = DEFAULT_SPECIALTY):
        self._benchmarks = MappingProxyType(dict(benchmarks))
        self.default_specialty = default_specialty

    @classmethod
    def load(cls, filepath: Path | None = None,
             default_specialty: str = DEFAULT_SPECIALTY) -> "BenchmarkStore":
        """Load benchmarks from CSV or Parquet (the bundled table by default)."""
        if filepath is None:
            filepath = DEFAULT_BENCHMARKS_FILE
        if not filepath.exists():
            raise click.ClickException(f"Benchmark file {filepath} not found.")

        df = pl.read_parquet(filepath) if filepath.suffix == ".parquet" else pl.read_csv(filepath)
        return cls.from_frame(df, default_specialty=default_specialty)

    @classmethod
    def from_frame(cls, df: pl.DataFrame,
                   default_specialty: str = DEFAULT_SPECIALTY) -> "BenchmarkStore":
        benchmarks = {}
        for row in df.iter_rows(named=True):
            values = {}
            for name in BENCHMARK_FIELDS:
                if name == "specialty":
                    continue
                value = row.get(name)
                values[name] = int(value or 0) if name == "provider_count" else float(value or 0.0)
            specialty = str(row["specialty"])
            benchmarks[specialty] = SpecialtyBenchmark(specialty=specialty, **values)
        return cls(benchmarks, default_specialty=default_specialty)

    def get_benchmark(self, specialty: str) -> SpecialtyBenchmark | None:
        """Exact benchmark for a specialty (CMS provider type names are aliased)."""
        return self._benchmarks.get(SPECIALTY_ALIASES.get(specialty, specialty))

    def benchmark_for(self, specialty: str) -> SpecialtyBenchmark | None:
        """Benchmark for a specialty, falling back to the default specialty."""
        return self.get_benchmark(specialty) or self._benchmarks.get(self.default_specialty)

    @property
    def specialties(self) -> list[str]:
        return sorted(self._benchmarks)

    def __contains__(self, specialty: str) -> bool:
        return self.get_benchmark(specialty) is not None

    def __len__(self) -> int:
        return len(self._benchmarks)


def build_benchmarks(summary: pl.DataFrame) -> pl.DataFrame:
    """Compute specialty benchmarks from a provider summary (see data.loader).

    E&M shares are pooled across the specialty's visits; adoption rates are
    the fraction of providers billing the program at all.
    """
    em_cols = [f"em_{level}" for level in EM_LEVELS]
    em_total = pl.sum_horizontal([pl.col(c).sum() for c in em_cols])

    def share(numerator: pl.Expr, denominator: pl.Expr) -> pl.Expr:
        return pl.when(denominator > 0).then(numerator / denominator).otherwise(0.0)

    aggregations = [
        pl.len().alias("provider_count"),
        pl.col("total_beneficiaries").mean().alias("avg_medicare_patients"),
        pl.col("total_medicare_payment").mean().alias("avg_total_payment"),
        share(pl.col("total_medicare_payment").sum(),
              pl.col("total_beneficiaries").sum()).alias("avg_revenue_per_patient"),
    ]
    for level in EM_LEVELS:
        aggregations.append(share(pl.col(f"em_{level}").sum(), em_total).alias(f"pct_{level}"))
    for program in ("ccm", "rpm", "bhi", "awv"):
        aggregations.append(
            (pl.col(f"{program}_services") > 0).mean().alias(f"{program}_adoption_rate")
        )

    return (
        summary.filter(pl.col("specialty").is_not_null() & (pl.col("specialty") != ""))
        .group_by("specialty")
        .agg(aggregations)
        .sort(["provider_count", "specialty"], descending=[True, False])
    )
