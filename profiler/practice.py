from datetime import datetime, timezone

import click

from data.benchmarks import BenchmarkStore
from data.errors import ScanError
from data.models import (
    DataSource,
    Difficulty,
    GroupScanResult,
    PracticeActionItem,
    Program,
    ProgramAdoption,
    ProviderBillingRecord,
    ProviderScan,
    ProviderScanSummary,
    ScanStatus,
    SpecialtyGroup,
    TierCount,
)
from data.resolver import Resolver
from scanner.batch import MAX_CONCURRENT, RESOLVE_TIMEOUT, BatchEntry, scan_batch
from scanner.gaps import scan_provider
from scanner.programs import PROGRAM_RULES, ProgramRule
from scanner.scoring import SCORE_TIERS, get_score_tier

DEFAULT_PRACTICE_NAME = "Group Practice"

ADOPTION_PROGRAMS = (Program.CCM, Program.RPM, Program.BHI, Program.AWV)

# Practice-wide interventions, in the order they are considered. A program
# only makes the plan when a provider's gap exceeds its threshold.
PRACTICE_ACTIONS = [
    {
        "program": Program.CODING,
        "threshold": 5000,
        "title": "Optimize E&M Coding Across Practice",
        "description": (
            "{count} {providers} could benefit from documentation review and coding "
            "education. Focus on shifting appropriate visits from 99213 to 99214/99215."
        ),
        "difficulty": Difficulty.MEDIUM,
    },
    {
        "program": Program.CCM,
        "threshold": 3000,
        "title": "Launch Chronic Care Management (CCM) Program",
        "description": (
            "{count} {providers} {have} eligible patients not enrolled in CCM. A practice-wide "
            "CCM program with dedicated care coordinators can capture this revenue."
        ),
        "difficulty": Difficulty.MEDIUM,
    },
    {
        "program": Program.RPM,
        "threshold": 2000,
        "title": "Implement Remote Patient Monitoring (RPM)",
        "description": (
            "{count} {providers} {have} patients who would benefit from RPM. Deploy connected "
            "devices for blood pressure, glucose and weight monitoring."
        ),
        "difficulty": Difficulty.HARD,
    },
    {
        "program": Program.AWV,
        "threshold": 1000,
        "title": "Increase Annual Wellness Visit (AWV) Capture",
        "description": (
            "{count} {providers} {are} under-billing AWVs. Set up proactive outreach and "
            "scheduling for Medicare wellness visits."
        ),
        "difficulty": Difficulty.EASY,
    },
    {
        "program": Program.BHI,
        "threshold": 1000,
        "title": "Add Behavioral Health Integration (BHI)",
        "description": (
            "{count} {providers} {have} patients eligible for BHI services. Build depression "
            "screening and behavioral health follow-up into visit workflows."
        ),
        "difficulty": Difficulty.MEDIUM,
    },
]


def summarize_provider(npi: str, entry: BatchEntry, benchmarks: BenchmarkStore,
                       rules: dict[Program, ProgramRule] = PROGRAM_RULES) -> ProviderScanSummary:
    """Score one resolved provider, or turn a failed lookup into a failed row."""
    if not entry.ok:
        return failed_summary(npi, entry.error or "Scan failed")

    record = entry.record
    try:
        benchmark = benchmarks.benchmark_for(record.specialty)
        if benchmark is None:
            return failed_summary(npi, f"No benchmark for specialty '{record.specialty}'")
        scan = scan_provider(record, benchmark, rules)
        return _success_summary(npi, record, scan)
    except ScanError as exc:
        click.echo(f"  NPI {npi}: could not be scored - {exc.format_message()}")
        return failed_summary(npi, f"Could not score provider: {exc.format_message()}")
    except (ValueError, TypeError, ZeroDivisionError, AttributeError) as exc:
        click.echo(f"  NPI {npi}: could not be scored - {exc}")
        return failed_summary(npi, f"Could not score provider: {exc}")


def _success_summary(npi: str, record: ProviderBillingRecord,
                     scan: ProviderScan) -> ProviderScanSummary:
    tier = get_score_tier(scan.score.overall)
    return ProviderScanSummary(
        npi=npi,
        full_name=record.name or f"Provider {npi}",
        credential=record.credential,
        specialty=record.specialty,
        city=record.city,
        state=record.state,
        revenue_score=scan.score.overall,
        score_tier=tier.label,
        score_color=tier.hex_color,
        current_revenue=record.total_medicare_payment,
        missed_revenue=scan.total_missed_revenue,
        potential_revenue=record.total_medicare_payment + scan.total_missed_revenue,
        coding_gap=scan.coding_gap.annual_gap,
        ccm_gap=scan.ccm_gap.annual_gap,
        rpm_gap=scan.rpm_gap.annual_gap,
        bhi_gap=scan.bhi_gap.annual_gap,
        awv_gap=scan.awv_gap.annual_gap,
        data_source=record.data_source,
        status=ScanStatus.SUCCESS,
        scan=scan,
    )


def failed_summary(npi: str, error: str) -> ProviderScanSummary:
    tier = SCORE_TIERS[-1]
    return ProviderScanSummary(
        npi=npi,
        full_name=f"Provider {npi}",
        specialty="Unknown",
        score_tier=tier.label,
        score_color=tier.hex_color,
        data_source=DataSource.ESTIMATED,
        status=ScanStatus.FAILED,
        error=error,
    )


def aggregate(providers: list[ProviderScanSummary],
              practice_name: str = DEFAULT_PRACTICE_NAME) -> GroupScanResult:
    """Fold per-provider summaries into one practice-level report.

    Totals, averages and rankings only count successful scans; failed
    providers stay in the provider list so callers can see which NPIs
    didn't resolve.
    """
    successful = [p for p in providers if p.status == ScanStatus.SUCCESS]
    failed = [p for p in providers if p.status == ScanStatus.FAILED]

    # Revenue aggregates
    total_current = sum(p.current_revenue for p in successful)
    total_missed = sum(p.missed_revenue for p in successful)
    increase_pct = round(total_missed / total_current * 100) if total_current > 0 else 0

    # Score aggregates
    average_score = (
        round(sum(p.revenue_score for p in successful) / len(successful)) if successful else 0
    )
    distribution = []
    for tier in SCORE_TIERS:
        count = sum(1 for p in successful if tier.min <= p.revenue_score <= tier.max)
        if count:
            distribution.append(TierCount(tier=tier.label, count=count, color=tier.hex_color))

    # Rankings
    by_score = sorted(successful, key=lambda p: p.revenue_score, reverse=True)
    by_missed = sorted(successful, key=lambda p: p.missed_revenue, reverse=True)

    return GroupScanResult(
        practice_name=practice_name,
        scanned_at=datetime.now(timezone.utc).isoformat(),
        providers=list(providers),
        total_providers=len(providers),
        successful_scans=len(successful),
        failed_scans=len(failed),
        total_current_revenue=total_current,
        total_missed_revenue=total_missed,
        total_potential_revenue=total_current + total_missed,
        revenue_increase_pct=increase_pct,
        average_revenue_score=average_score,
        score_distribution=distribution,
        total_coding_gap=sum(p.coding_gap for p in successful),
        total_ccm_gap=sum(p.ccm_gap for p in successful),
        total_rpm_gap=sum(p.rpm_gap for p in successful),
        total_bhi_gap=sum(p.bhi_gap for p in successful),
        total_awv_gap=sum(p.awv_gap for p in successful),
        program_adoption=build_program_adoption(successful),
        specialty_breakdown=build_specialty_breakdown(successful),
        top_performer=by_score[0] if by_score else None,
        bottom_performer=by_score[-1] if by_score else None,
        biggest_opportunity=by_missed[0] if by_missed else None,
        practice_action_plan=build_practice_action_plan(successful),
        cms_data_count=sum(1 for p in successful if p.data_source == DataSource.CMS),
        estimated_data_count=sum(1 for p in successful if p.data_source == DataSource.ESTIMATED),
    )


def build_program_adoption(providers: list[ProviderScanSummary]) -> dict[str, ProgramAdoption]:
    """Enrolled vs eligible patients per program, over providers with gap data."""
    with_scan = [p for p in providers if p.scan is not None]

    adoption = {}
    for program in ADOPTION_PROGRAMS:
        enrolled = sum(p.scan.gap(program).current_patients for p in with_scan)
        eligible = sum(p.scan.gap(program).eligible_patients for p in with_scan)
        rate = min(1.0, enrolled / eligible) if eligible > 0 else 0.0
        adoption[program.value] = ProgramAdoption(
            enrolled=enrolled, eligible=eligible, rate=round(rate, 4),
        )
    return adoption


def build_specialty_breakdown(providers: list[ProviderScanSummary]) -> list[SpecialtyGroup]:
    groups: dict[str, SpecialtyGroup] = {}
    for p in providers:
        group = groups.setdefault(p.specialty, SpecialtyGroup(specialty=p.specialty, count=0,
                                                              total_revenue=0.0))
        group.count += 1
        group.total_revenue += p.current_revenue
    return sorted(groups.values(), key=lambda g: g.count, reverse=True)


def build_practice_action_plan(providers: list[ProviderScanSummary]) -> list[PracticeActionItem]:
    """Practice-wide actions, largest revenue first, numbered from 1."""
    items = []
    for action in PRACTICE_ACTIONS:
        program = action["program"]
        affected = [p for p in providers if p.gap(program) > action["threshold"]]
        if not affected:
            continue

        plural = len(affected) > 1
        description = action["description"].format(
            count=len(affected),
            providers="providers" if plural else "provider",
            have="have" if plural else "has",
            are="are" if plural else "is",
        )
        items.append(PracticeActionItem(
            priority=0,
            title=action["title"],
            description=description,
            affected_providers=len(affected),
            total_estimated_revenue=sum(p.gap(program) for p in affected),
            difficulty=action["difficulty"],
            category=program,
        ))

    items.sort(key=lambda item: item.total_estimated_revenue, reverse=True)
    for priority, item in enumerate(items, 1):
        item.priority = priority
    return items


def build_group_result(scan_map: dict[str, BatchEntry], benchmarks: BenchmarkStore,
                       practice_name: str = DEFAULT_PRACTICE_NAME,
                       rules: dict[Program, ProgramRule] = PROGRAM_RULES) -> GroupScanResult:
    """Score every entry of a batch scan and aggregate the practice report."""
    providers = [
        summarize_provider(npi, entry, benchmarks, rules) for npi, entry in scan_map.items()
    ]
    return aggregate(providers, practice_name)


async def scan_practice(npis: list[str], resolver: Resolver, benchmarks: BenchmarkStore,
                        practice_name: str = DEFAULT_PRACTICE_NAME,
                        max_concurrent: int = MAX_CONCURRENT,
                        timeout: float | None = RESOLVE_TIMEOUT,
                        rules: dict[Program, ProgramRule] = PROGRAM_RULES) -> GroupScanResult:
    """Resolve, score and aggregate a batch of NPIs into one practice report."""
    click.echo(f"Scanning {len(npis)} providers for {practice_name}...")
    scan_map = await scan_batch(npis, resolver, max_concurrent=max_concurrent, timeout=timeout)
    return build_group_result(scan_map, benchmarks, practice_name, rules)
