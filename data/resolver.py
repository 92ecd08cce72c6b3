import asyncio
from pathlib import Path
from typing import Awaitable, Callable

import click
import polars as pl

from data.benchmarks import BenchmarkStore
from data.errors import NotFoundError
from data.estimate import estimate_billing_record
from data.fetch import lookup_npi
from data.loader import load_provider_summary, record_from_row
from data.models import DataSource, ProviderBillingRecord

# Any async callable that turns an NPI into a billing record, raising
# NotFoundError or UpstreamError when it can't
Resolver = Callable[[str], Awaitable[ProviderBillingRecord]]


class DatasetResolver:
    """Resolve NPIs against a preprocessed CMS provider summary.

    With ``estimate`` enabled, NPIs missing from the dataset are looked up
    in the NPPES registry and given a benchmark-based estimated record.
    """

    def __init__(self, summary: pl.DataFrame | None, benchmarks: BenchmarkStore,
                 estimate: bool = True, registry_lookup: Callable[[str], dict] = lookup_npi):
        self._rows: dict[str, dict] = {}
        if summary is not None:
            self._rows = {str(row["npi"]): row for row in summary.iter_rows(named=True)}
        self.benchmarks = benchmarks
        self.estimate = estimate
        self.registry_lookup = registry_lookup

    @classmethod
    def from_path(cls, filepath: Path | None, benchmarks: BenchmarkStore,
                  estimate: bool = True) -> "DatasetResolver":
        summary = None
        if filepath is not None:
            summary = load_provider_summary(filepath)
            click.echo(f"Loaded {len(summary):,} provider summaries from {filepath}")
        return cls(summary, benchmarks, estimate=estimate)

    def __len__(self) -> int:
        return len(self._rows)

    async def __call__(self, npi: str) -> ProviderBillingRecord:
        row = self._rows.get(npi)
        if row is not None:
            return record_from_row(row, DataSource.CMS)

        if not self.estimate:
            raise NotFoundError(f"NPI {npi} not found in CMS billing data")

        # urllib blocks, keep it off the event loop
        identity = await asyncio.to_thread(self.registry_lookup, npi)
        if not identity:
            raise NotFoundError(f"NPI {npi} not found in CMS billing data or the NPPES registry")

        benchmark = self.benchmarks.benchmark_for(identity.get("specialty", ""))
        if benchmark is None:
            raise NotFoundError(f"No benchmark available to estimate NPI {npi}")
        return estimate_billing_record(npi, identity, benchmark)
