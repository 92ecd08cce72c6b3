"""Shared fixtures: synthetic CMS provider-and-service extract, benchmarks, fake resolvers."""

import asyncio
import csv
from dataclasses import replace
from pathlib import Path

import polars as pl
import pytest

from data.benchmarks import BenchmarkStore
from data.errors import NotFoundError
from data.loader import load_services, summarize_providers
from data.models import DataSource, ProviderBillingRecord, SpecialtyBenchmark


# Provider NPIs
FAMILY_NPI = "1000000001"      # codes at benchmark, bills CCM, RPM and AWV
UNDERCODER_NPI = "2000000002"  # mostly 99213, no care-management programs
CARDIO_NPI = "3000000003"      # cardiologist with a non-E&M code
CLINIC_NPI = "4000000004"      # organization: no first name

# CMS schema: each row is one (provider, HCPCS code) aggregation for the year
# Columns: Rndrng_NPI, Rndrng_Prvdr_Last_Org_Name, Rndrng_Prvdr_First_Name,
#          Rndrng_Prvdr_Crdntls, Rndrng_Prvdr_City, Rndrng_Prvdr_State_Abrvtn,
#          Rndrng_Prvdr_Type, HCPCS_Cd, Tot_Benes, Tot_Srvcs, Avg_Mdcr_Pymt_Amt

FAMILY_MEDICINE = SpecialtyBenchmark(
    specialty="Family Medicine",
    provider_count=78514,
    avg_medicare_patients=144,
    avg_total_payment=55556,
    avg_revenue_per_patient=385,
    pct_99211=0.01,
    pct_99212=0.013,
    pct_99213=0.3221,
    pct_99214=0.6133,
    pct_99215=0.0416,
    ccm_adoption_rate=0.052,
    rpm_adoption_rate=0.0172,
    bhi_adoption_rate=0.0014,
    awv_adoption_rate=0.5352,
)


def _generate_rows() -> list[dict]:
    """Build synthetic rows matching the CMS provider-and-service schema."""
    rows = []

    def add(npi, last, first, specialty, hcpcs, beneficiaries, services, payment,
            city="HOUSTON", state="TX", credential="M.D."):
        rows.append({
            "Rndrng_NPI": npi,
            "Rndrng_Prvdr_Last_Org_Name": last,
            "Rndrng_Prvdr_First_Name": first,
            "Rndrng_Prvdr_Crdntls": credential,
            "Rndrng_Prvdr_City": city,
            "Rndrng_Prvdr_State_Abrvtn": state,
            "Rndrng_Prvdr_Type": specialty,
            "HCPCS_Cd": hcpcs,
            "Tot_Benes": beneficiaries,
            "Tot_Srvcs": services,
            "Avg_Mdcr_Pymt_Amt": f"{payment:.2f}",
        })

    # --- Family physician: healthy coding mix plus CCM, RPM and AWV ---
    fam = (FAMILY_NPI, "SMITH", "JANE", "Family Practice")
    add(*fam, "99213", 250, 600, 92.03)
    add(*fam, "99214", 300, 700, 130.04)
    add(*fam, "99215", 40, 50, 176.15)
    add(*fam, "99490", 25, 300, 66.00)
    add(*fam, "99454", 20, 240, 55.72)
    add(*fam, "99457", 20, 180, 48.80)
    add(*fam, "G0439", 200, 200, 118.88)

    # --- Undercoder: internal medicine, 99213-heavy, no programs ---
    under = (UNDERCODER_NPI, "JONES", "ROBERT", "Internal Medicine")
    add(*under, "99212", 50, 60, 57.31, city="CHICAGO", state="IL")
    add(*under, "99213", 400, 1500, 92.03, city="CHICAGO", state="IL")
    add(*under, "99214", 100, 200, 130.04, city="CHICAGO", state="IL")

    # --- Cardiologist: E&M plus ECGs ---
    cardio = (CARDIO_NPI, "GARCIA", "MARIA", "Cardiology")
    add(*cardio, "99214", 500, 900, 130.04)
    add(*cardio, "99215", 100, 150, 176.15)
    add(*cardio, "93000", 300, 400, 17.00)

    # --- Organization billing under its own NPI ---
    add(CLINIC_NPI, "MAIN STREET CLINIC", "", "Family Practice", "99213", 100, 200, 92.03,
        credential="")

    return rows


@pytest.fixture
def sample_csv(tmp_path: Path) -> Path:
    """Write the synthetic CMS extract and return its path."""
    filepath = tmp_path / "cms_provider_service.csv"
    rows = _generate_rows()
    fieldnames = list(rows[0].keys())
    with open(filepath, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)
    return filepath


@pytest.fixture
def provider_summary(sample_csv: Path) -> pl.DataFrame:
    """One billing summary row per NPI, as preprocess() writes it."""
    return summarize_providers(load_services(sample_csv))


@pytest.fixture
def benchmarks() -> BenchmarkStore:
    """The bundled specialty benchmark table."""
    return BenchmarkStore.load()


def make_record(npi: str = FAMILY_NPI, **overrides) -> ProviderBillingRecord:
    """A family physician whose coding, revenue and panel sit at benchmark."""
    record = ProviderBillingRecord(
        npi=npi,
        name="JANE SMITH",
        credential="M.D.",
        specialty="Family Medicine",
        city="HOUSTON",
        state="TX",
        total_medicare_payment=385_000.0,
        total_beneficiaries=1000,
        total_services=4000,
        em_99211=10,
        em_99212=13,
        em_99213=322,
        em_99214=613,
        em_99215=42,
        distinct_code_count=12,
        data_source=DataSource.CMS,
    )
    return replace(record, **overrides)


class FakeResolver:
    """In-memory resolver that records calls and peak concurrency."""

    def __init__(self, records: dict[str, ProviderBillingRecord] | None = None,
                 failures: dict[str, Exception] | None = None,
                 delay: float = 0.0, hang: tuple[str, ...] = ()):
        self.records = records or {}
        self.failures = failures or {}
        self.delay = delay
        self.hang = set(hang)
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, npi: str) -> ProviderBillingRecord:
        self.calls.append(npi)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if npi in self.hang:
                await asyncio.sleep(3600)
            await asyncio.sleep(self.delay)
            if npi in self.failures:
                raise self.failures[npi]
            if npi not in self.records:
                raise NotFoundError(f"NPI {npi} not found")
            return self.records[npi]
        finally:
            self.in_flight -= 1
