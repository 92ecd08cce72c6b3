from pathlib import Path

import click
import polars as pl

from data.benchmarks import SPECIALTY_ALIASES, build_benchmarks
from data.models import DataSource, EM_LEVELS, ProviderBillingRecord

# Column name mapping: CMS extract -> internal names
# "Medicare Physician & Other Practitioners - by Provider and Service" columns:
#   Rndrng_NPI, Rndrng_Prvdr_Last_Org_Name, Rndrng_Prvdr_First_Name,
#   Rndrng_Prvdr_Crdntls, Rndrng_Prvdr_City, Rndrng_Prvdr_State_Abrvtn,
#   Rndrng_Prvdr_Type, HCPCS_Cd, Tot_Benes, Tot_Srvcs, Avg_Mdcr_Pymt_Amt
COLUMN_MAP = {
    "npi": "Rndrng_NPI",
    "last_name": "Rndrng_Prvdr_Last_Org_Name",
    "first_name": "Rndrng_Prvdr_First_Name",
    "credential": "Rndrng_Prvdr_Crdntls",
    "city": "Rndrng_Prvdr_City",
    "state": "Rndrng_Prvdr_State_Abrvtn",
    "specialty": "Rndrng_Prvdr_Type",
    "hcpcs_code": "HCPCS_Cd",
    "beneficiaries": "Tot_Benes",
    "services": "Tot_Srvcs",
    "avg_payment": "Avg_Mdcr_Pymt_Amt",
}

REVERSE_MAP = {v: k for k, v in COLUMN_MAP.items()}

# HCPCS codes per program; CCM/RPM/BHI are billed monthly, AWV yearly
PROGRAM_CODES = {
    "ccm": ["99490"],
    "rpm": ["99454", "99457"],
    "bhi": ["99484"],
    "awv": ["G0438", "G0439"],
}

PROCESSED_DIR = Path(__file__).parent / "processed"
PROVIDER_SUMMARY_FILE = PROCESSED_DIR / "provider_summary.parquet"
BENCHMARKS_FILE = PROCESSED_DIR / "specialty_benchmarks.parquet"

RECORD_TEXT_FIELDS = ("name", "credential", "specialty", "city", "state")
RECORD_INT_FIELDS = (
    "total_beneficiaries", "total_services",
    *(f"em_{level}" for level in EM_LEVELS),
    "ccm_services", "rpm_services", "bhi_services", "awv_services",
)
RECORD_FLOAT_FIELDS = (
    "total_medicare_payment", "ccm_payment", "rpm_payment", "bhi_payment", "awv_payment",
)


def _normalize(lf: pl.LazyFrame) -> pl.LazyFrame:
    """Rename CMS columns to internal names and cast identifiers to strings."""
    existing_cols = lf.collect_schema().names()
    rename_map = {raw: internal for raw, internal in REVERSE_MAP.items() if raw in existing_cols}

    if rename_map:
        lf = lf.rename(rename_map)

    names = lf.collect_schema().names()
    for text_col in ["npi", "hcpcs_code"]:
        if text_col in names:
            lf = lf.with_columns(pl.col(text_col).cast(pl.Utf8))

    return lf


def load_services(filepath: Path) -> pl.LazyFrame:
    """Load a CMS provider-and-service extract as a Polars LazyFrame.

    Supports both CSV and Parquet files.
    """
    if filepath.suffix == ".parquet":
        lf = pl.scan_parquet(filepath)
    else:
        lf = pl.scan_csv(
            filepath,
            infer_schema_length=10000,
            schema_overrides={COLUMN_MAP["npi"]: pl.Utf8, COLUMN_MAP["hcpcs_code"]: pl.Utf8},
        )

    return _normalize(lf)


def summarize_providers(lf: pl.LazyFrame) -> pl.DataFrame:
    """Collapse service-level rows into one billing summary row per NPI.

    Beneficiaries are the largest per-code count, a lower bound on the
    panel since CMS suppresses the cross-code unique count in this file.
    """
    payment = pl.col("services") * pl.col("avg_payment")
    code = pl.col("hcpcs_code")

    aggregations = [
        pl.concat_str([pl.col("first_name"), pl.col("last_name")], separator=" ",
                      ignore_nulls=True).first().alias("name"),
        pl.col("credential").first(),
        pl.col("specialty").first(),
        pl.col("city").first(),
        pl.col("state").first(),
        payment.sum().alias("total_medicare_payment"),
        pl.col("beneficiaries").max().alias("total_beneficiaries"),
        pl.col("services").sum().alias("total_services"),
        code.n_unique().alias("distinct_code_count"),
    ]
    for level in EM_LEVELS:
        aggregations.append(pl.col("services").filter(code == level).sum().alias(f"em_{level}"))
    for program, codes in PROGRAM_CODES.items():
        aggregations.append(payment.filter(code.is_in(codes)).sum().alias(f"{program}_payment"))
        if program == "rpm":
            # Device supply and management are billed for the same patient-months
            for rpm_code in codes:
                aggregations.append(
                    pl.col("services").filter(code == rpm_code).sum().alias(f"_rpm_{rpm_code}")
                )
        else:
            aggregations.append(
                pl.col("services").filter(code.is_in(codes)).sum().alias(f"{program}_services")
            )

    rpm_cols = [f"_rpm_{c}" for c in PROGRAM_CODES["rpm"]]
    return (
        lf.group_by("npi")
        .agg(aggregations)
        .with_columns(pl.max_horizontal(rpm_cols).alias("rpm_services"))
        .drop(rpm_cols)
        .with_columns(pl.col("specialty").replace(SPECIALTY_ALIASES))
        .sort("npi")
        .collect()
    )


def load_provider_summary(filepath: Path) -> pl.DataFrame:
    """Read a provider summary written by preprocess() (Parquet or CSV)."""
    if filepath.suffix == ".parquet":
        return pl.read_parquet(filepath)
    return pl.read_csv(filepath, schema_overrides={"npi": pl.Utf8})


def record_from_row(row: dict, data_source: DataSource = DataSource.CMS) -> ProviderBillingRecord:
    """Build a billing record from a loose summary row.

    Missing or null numeric fields become zero here so scoring and gap
    estimation never see a None.
    """
    values: dict = {"npi": str(row["npi"]), "data_source": data_source}
    for name in RECORD_TEXT_FIELDS:
        values[name] = str(row.get(name) or "").strip()
    for name in RECORD_INT_FIELDS:
        values[name] = max(0, int(round(row.get(name) or 0)))
    for name in RECORD_FLOAT_FIELDS:
        values[name] = max(0.0, float(row.get(name) or 0.0))

    codes = row.get("distinct_code_count")
    values["distinct_code_count"] = int(codes) if codes is not None else None
    return ProviderBillingRecord(**values)


def preprocess(raw_filepath: Path) -> tuple[Path, Path]:
    """Read the raw CMS extract once and write the two files scans run from.

    Creates:
      - provider_summary.parquet: one billing summary row per NPI.
      - specialty_benchmarks.parquet: specialty averages and adoption rates
        computed from that summary.

    Returns the paths to both files.
    """
    PROCESSED_DIR.mkdir(parents=True, exist_ok=True)

    click.echo(f"Reading raw dataset: {raw_filepath}")
    lf = load_services(raw_filepath)

    click.echo("Aggregating provider billing summaries...")
    summary = summarize_providers(lf)
    summary.write_parquet(PROVIDER_SUMMARY_FILE)
    click.echo(f"  -> {PROVIDER_SUMMARY_FILE} ({PROVIDER_SUMMARY_FILE.stat().st_size / 1e6:.1f} MB, {len(summary):,} providers)")

    click.echo("Computing specialty benchmarks...")
    benchmarks = build_benchmarks(summary)
    benchmarks.write_parquet(BENCHMARKS_FILE)
    click.echo(f"  -> {BENCHMARKS_FILE} ({len(benchmarks):,} specialties)")

    return PROVIDER_SUMMARY_FILE, BENCHMARKS_FILE


def find_preprocessed() -> tuple[Path, Path] | None:
    """Return paths to preprocessed files if they exist."""
    if PROVIDER_SUMMARY_FILE.exists() and BENCHMARKS_FILE.exists():
        return PROVIDER_SUMMARY_FILE, BENCHMARKS_FILE
    return None
