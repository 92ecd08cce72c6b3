import asyncio
import csv
import json
from datetime import datetime
from pathlib import Path

import click
import uvicorn

from api.app import create_app
from data.benchmarks import BenchmarkStore
from data.fetch import find_dataset
from data.loader import find_preprocessed, preprocess
from data.models import Program, ScanStatus
from data.resolver import DatasetResolver
from profiler.practice import DEFAULT_PRACTICE_NAME, scan_practice
from scanner.batch import MAX_CONCURRENT, RESOLVE_TIMEOUT, validate_npis
from scanner.gaps import scan_provider
from scanner.programs import PROGRAM_RULES, load_program_rules
from scanner.scoring import estimate_percentile

OUTPUT_DIR = Path(__file__).parent / "output"

data_option = click.option(
    "--data-path", default=None, type=click.Path(exists=True, path_type=Path),
    help="Provider summary to scan against (defaults to the preprocessed summary)")
benchmarks_option = click.option(
    "--benchmarks-path", default=None, type=click.Path(exists=True, path_type=Path),
    help="Specialty benchmark table (defaults to preprocessed, then bundled benchmarks)")
rates_option = click.option(
    "--rates-path", default=None, type=click.Path(exists=True, path_type=Path),
    help="CSV overriding program rates and eligibility heuristics")
estimate_option = click.option(
    "--estimate/--no-estimate", default=True,
    help="Estimate providers missing from CMS data via the NPPES registry")


@click.group()
def cli():
    """NPIxray: score Medicare billing and find missed revenue across a practice."""
    pass


@cli.command("preprocess")
@click.option("--data-path", default=None, type=click.Path(exists=True),
              help="Path to the raw CMS extract (auto-detected if not specified)")
def preprocess_cmd(data_path: str | None):
    """Summarize the raw CMS extract per provider and compute specialty benchmarks."""
    filepath = Path(data_path) if data_path else find_dataset()
    preprocess(filepath)
    click.echo("\nPreprocessing complete. Run 'python cli.py group-scan NPI NPI ...' to scan a practice.")


@cli.command()
@click.argument("npi")
@data_option
@benchmarks_option
@rates_option
@estimate_option
def score(npi: str, data_path: Path | None, benchmarks_path: Path | None,
          rates_path: Path | None, estimate: bool):
    """Score a single provider and list their revenue gaps."""
    benchmarks, resolver, rules = _load_context(data_path, benchmarks_path, rates_path, estimate)

    record = asyncio.run(resolver(npi))
    benchmark = benchmarks.benchmark_for(record.specialty)
    if benchmark is None:
        raise click.ClickException(f"No benchmark for specialty '{record.specialty}'")
    result = scan_provider(record, benchmark, rules)

    click.echo(f"\n{'=' * 60}")
    click.echo(f"Provider NPI: {npi} ({record.data_source.value} data)")
    if record.name:
        click.echo(f"Provider Name: {record.name} {record.credential}".rstrip())
    click.echo(f"Specialty: {record.specialty or 'Unknown'} (benchmark: {benchmark.specialty})")
    click.echo(f"Medicare Payment: ${record.total_medicare_payment:,.2f} "
               f"from {record.total_beneficiaries:,} beneficiaries")

    s = result.score
    click.echo(f"\nRevenue Score: {s.overall}/100 ({s.label}), "
               f"~{estimate_percentile(s.overall)}th percentile")
    for name, value in vars(s.breakdown).items():
        click.echo(f"  {name.replace('_', ' ').title():<22} {value:3d}")

    click.echo(f"\nMissed Revenue: ${result.total_missed_revenue:,}/year")
    for program in Program:
        gap = result.gap(program)
        click.echo(f"  {program.value.upper():<7} ${gap.annual_gap:>10,}  "
                   f"({gap.current_patients:,} current / {gap.eligible_patients:,} eligible)")

    if result.action_plan:
        click.echo("\nAction Plan:")
        for item in result.action_plan:
            click.echo(f"  {item.priority}. [{item.difficulty.value}] {item.title} "
                       f"(${item.estimated_revenue:,}, {item.timeline})")
    click.echo(f"{'=' * 60}")


@cli.command("group-scan")
@click.argument("npis", nargs=-1, required=True)
@click.option("--practice-name", default=DEFAULT_PRACTICE_NAME, help="Name shown on the report")
@click.option("--concurrency", default=MAX_CONCURRENT, type=click.IntRange(min=1),
              help="Maximum lookups in flight")
@click.option("--timeout", default=RESOLVE_TIMEOUT, type=float,
              help="Seconds before a single lookup is abandoned")
@click.option("--output", default=None, type=click.Path(dir_okay=False, path_type=Path),
              help="Where to write the JSON report (defaults to output/)")
@data_option
@benchmarks_option
@rates_option
@estimate_option
def group_scan(npis: tuple[str, ...], practice_name: str, concurrency: int, timeout: float,
               output: Path | None, data_path: Path | None, benchmarks_path: Path | None,
               rates_path: Path | None, estimate: bool):
    """Scan every provider in a practice and build the practice report."""
    unique = validate_npis(list(npis))
    benchmarks, resolver, rules = _load_context(data_path, benchmarks_path, rates_path, estimate)

    result = asyncio.run(scan_practice(
        unique, resolver, benchmarks, practice_name=practice_name,
        max_concurrent=concurrency, timeout=timeout, rules=rules,
    ))

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    if output is None:
        output = OUTPUT_DIR / f"group_scan_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(result.to_dict(), indent=2))

    csv_path = output.with_suffix(".csv")
    with open(csv_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["npi", "name", "specialty", "status", "score", "tier",
                         "current_revenue", "missed_revenue", "data_source"])
        for p in result.providers:
            writer.writerow([p.npi, p.full_name, p.specialty, p.status.value, p.revenue_score,
                             p.score_tier, f"{p.current_revenue:.2f}", f"{p.missed_revenue:.2f}",
                             p.data_source.value])

    click.echo(f"\n{'=' * 60}")
    click.echo(f"{result.practice_name}: {result.successful_scans} of {result.total_providers} "
               f"providers scanned ({result.failed_scans} failed)")
    click.echo(f"Average Revenue Score: {result.average_revenue_score}")
    click.echo(f"Current Revenue: ${result.total_current_revenue:,.2f}")
    click.echo(f"Missed Revenue: ${result.total_missed_revenue:,.2f} "
               f"(+{result.revenue_increase_pct}%)")
    if result.top_performer:
        click.echo(f"Top Performer: {result.top_performer.full_name} "
                   f"({result.top_performer.revenue_score})")
        click.echo(f"Biggest Opportunity: {result.biggest_opportunity.full_name} "
                   f"(${result.biggest_opportunity.missed_revenue:,.0f})")

    if result.practice_action_plan:
        click.echo("\nPractice Action Plan:")
        for item in result.practice_action_plan:
            click.echo(f"  {item.priority}. {item.title} - {item.affected_providers} providers, "
                       f"${item.total_estimated_revenue:,.0f}")

    failed = [p for p in result.providers if p.status == ScanStatus.FAILED]
    if failed:
        click.echo("\nFailed NPIs:")
        for p in failed:
            click.echo(f"  - {p.npi}: {p.error}")
    click.echo(f"{'=' * 60}")
    click.echo(f"\nReport saved to {output} (provider table: {csv_path})")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to listen on")
@click.option("--concurrency", default=MAX_CONCURRENT, type=click.IntRange(min=1),
              help="Maximum lookups in flight per request")
@click.option("--timeout", default=RESOLVE_TIMEOUT, type=float,
              help="Seconds before a single lookup is abandoned")
@data_option
@benchmarks_option
@rates_option
@estimate_option
def serve(host: str, port: int, concurrency: int, timeout: float, data_path: Path | None,
          benchmarks_path: Path | None, rates_path: Path | None, estimate: bool):
    """Serve the group scan API."""
    benchmarks, resolver, rules = _load_context(data_path, benchmarks_path, rates_path, estimate)
    app = create_app(resolver, benchmarks, max_concurrent=concurrency, timeout=timeout,
                     rules=rules)
    uvicorn.run(app, host=host, port=port)


def _load_context(data_path: Path | None, benchmarks_path: Path | None,
                  rates_path: Path | None, estimate: bool):
    """Load benchmarks, the provider resolver and program rules for a command."""
    preprocessed = find_preprocessed()

    if benchmarks_path is None and preprocessed:
        benchmarks_path = preprocessed[1]
    benchmarks = BenchmarkStore.load(benchmarks_path)
    click.echo(f"Loaded benchmarks for {len(benchmarks)} specialties")

    if data_path is None and preprocessed:
        data_path = preprocessed[0]
    if data_path is None:
        if not estimate:
            raise click.ClickException(
                "No provider data found. Run 'python cli.py preprocess' first, "
                "or pass --estimate to use registry estimates."
            )
        click.echo("No preprocessed provider data found; all providers will be estimated.")
    resolver = DatasetResolver.from_path(data_path, benchmarks, estimate=estimate)

    rules = load_program_rules(rates_path) if rates_path else PROGRAM_RULES
    return benchmarks, resolver, rules


if __name__ == "__main__":
    cli()
