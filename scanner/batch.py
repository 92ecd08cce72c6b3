import asyncio
import re
from dataclasses import dataclass

import click

from data.errors import BatchValidationError, NotFoundError, UpstreamError
from data.models import ProviderBillingRecord
from data.resolver import Resolver

MAX_CONCURRENT = 5
RESOLVE_TIMEOUT = 30.0  # seconds per NPI
MIN_BATCH_SIZE = 2
MAX_BATCH_SIZE = 50

NPI_PATTERN = re.compile(r"^\d{10}$")


@dataclass
class BatchEntry:
    """Outcome of resolving one NPI: a record, or why there isn't one."""
    npi: str
    record: ProviderBillingRecord | None = None
    error: str = ""
    error_kind: str = ""  # not_found, upstream, timeout or error

    @property
    def ok(self) -> bool:
        return self.record is not None


def dedupe(npis: list[str]) -> list[str]:
    """Drop repeated NPIs, keeping first-seen order."""
    return list(dict.fromkeys(npis))


def validate_npis(raw: list[str]) -> list[str]:
    """Check a group scan request before any provider is resolved.

    Every entry must be a 10-digit NPI, and after duplicates are dropped the
    batch must hold between MIN_BATCH_SIZE and MAX_BATCH_SIZE providers.
    Returns the de-duplicated list.
    """
    if not isinstance(raw, (list, tuple)) or not raw:
        raise BatchValidationError("npis must be a non-empty list")

    malformed = [str(n) for n in raw if not isinstance(n, str) or not NPI_PATTERN.match(n)]
    if malformed:
        raise BatchValidationError(f"Invalid NPI(s), expected 10 digits: {', '.join(malformed[:5])}")

    npis = dedupe(list(raw))
    if len(npis) < MIN_BATCH_SIZE:
        raise BatchValidationError(f"At least {MIN_BATCH_SIZE} distinct NPIs are required")
    if len(npis) > MAX_BATCH_SIZE:
        raise BatchValidationError(f"Maximum {MAX_BATCH_SIZE} NPIs per group scan")
    return npis


async def scan_batch(npis: list[str], resolver: Resolver,
                     max_concurrent: int = MAX_CONCURRENT,
                     timeout: float | None = RESOLVE_TIMEOUT) -> dict[str, BatchEntry]:
    """Resolve every NPI with at most ``max_concurrent`` lookups in flight.

    Duplicates are resolved once. A failed or timed-out lookup is recorded
    against its NPI and never cancels the others; nothing is retried.
    """
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")

    unique = dedupe(npis)
    semaphore = asyncio.Semaphore(max_concurrent)

    async def resolve(npi: str) -> BatchEntry:
        async with semaphore:
            try:
                record = await asyncio.wait_for(resolver(npi), timeout)
            except NotFoundError as exc:
                return _failed(npi, "not_found", exc.format_message())
            except UpstreamError as exc:
                return _failed(npi, "upstream", exc.format_message())
            except asyncio.TimeoutError:
                return _failed(npi, "timeout", f"Lookup timed out after {timeout}s")
            except Exception as exc:
                return _failed(npi, "error", str(exc) or type(exc).__name__)
            return BatchEntry(npi=npi, record=record)

    entries = await asyncio.gather(*(resolve(npi) for npi in unique))
    results = {entry.npi: entry for entry in entries}

    failed = sum(1 for entry in entries if not entry.ok)
    click.echo(f"Resolved {len(results) - failed} of {len(results)} NPIs ({failed} failed)")
    return results


def _failed(npi: str, kind: str, message: str) -> BatchEntry:
    label = {"not_found": "not found", "upstream": "upstream error"}.get(kind, kind)
    click.echo(f"  NPI {npi}: {label} - {message}")
    return BatchEntry(npi=npi, error=message, error_kind=kind)
