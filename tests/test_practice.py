"""Tests for group practice aggregation."""

import asyncio

import profiler.practice as practice
from data.errors import InvalidInputError, NotFoundError
from data.models import DataSource, Program, ProviderScanSummary, ScanStatus
from profiler.practice import (
    aggregate,
    build_group_result,
    build_practice_action_plan,
    failed_summary,
    scan_practice,
    summarize_provider,
)
from scanner.batch import BatchEntry
from tests.conftest import FakeResolver, make_record


def _summary(npi: str, score: int = 50, specialty: str = "Family Medicine",
             current: float = 100_000.0, missed: float = 0.0, **gaps) -> ProviderScanSummary:
    return ProviderScanSummary(
        npi=npi,
        full_name=f"Dr. {npi}",
        specialty=specialty,
        revenue_score=score,
        current_revenue=current,
        missed_revenue=missed,
        potential_revenue=current + missed,
        data_source=DataSource.CMS,
        **gaps,
    )


def test_all_failed_batch():
    providers = [failed_summary("1111111111", "not found"), failed_summary("2222222222", "timeout")]
    result = aggregate(providers, "Empty Practice")

    assert result.total_providers == 2
    assert result.successful_scans == 0
    assert result.failed_scans == 2
    assert result.total_current_revenue == 0
    assert result.total_missed_revenue == 0
    assert result.revenue_increase_pct == 0
    assert result.average_revenue_score == 0
    assert result.score_distribution == []
    assert result.specialty_breakdown == []
    assert result.practice_action_plan == []
    assert result.top_performer is None
    assert result.bottom_performer is None
    assert result.biggest_opportunity is None
    assert all(a.rate == 0 for a in result.program_adoption.values())
    # Failed providers are still listed
    assert [p.npi for p in result.providers] == ["1111111111", "2222222222"]


def test_failed_summary_fields():
    s = failed_summary("1111111111", "not found")
    assert s.status == ScanStatus.FAILED
    assert s.specialty == "Unknown"
    assert s.score_tier == "Critical"
    assert s.error == "not found"
    assert s.revenue_score == 0


def test_scores_and_rankings():
    providers = [
        _summary("1111111111", score=40, missed=5_000),
        _summary("2222222222", score=70, missed=20_000),
        _summary("3333333333", score=90, missed=1_000),
        failed_summary("4444444444", "not found"),
    ]
    result = aggregate(providers)

    assert result.successful_scans == 3
    assert result.failed_scans == 1
    assert result.average_revenue_score == 67
    assert result.top_performer.revenue_score == 90
    assert result.bottom_performer.revenue_score == 40
    assert result.biggest_opportunity.npi == "2222222222"
    assert result.total_current_revenue == 300_000
    assert result.total_missed_revenue == 26_000
    assert result.total_potential_revenue == 326_000
    assert result.revenue_increase_pct == 9


def test_score_distribution_omits_empty_tiers():
    providers = [_summary("1111111111", score=95), _summary("2222222222", score=92),
                 _summary("3333333333", score=30)]
    result = aggregate(providers)
    assert [(t.tier, t.count) for t in result.score_distribution] == [("Elite", 2), ("Critical", 1)]


def test_gap_totals_only_count_successes():
    providers = [_summary("1111111111", ccm_gap=1_000.0), _summary("2222222222", ccm_gap=2_500.0),
                 failed_summary("3333333333", "not found")]
    assert aggregate(providers).total_ccm_gap == 3_500


def test_practice_action_plan_ordering():
    providers = [
        _summary("1111111111", coding_gap=10_000.0),
        _summary("2222222222", rpm_gap=3_000.0),
        _summary("3333333333", awv_gap=25_000.0),
    ]
    plan = build_practice_action_plan(providers)

    assert [item.category for item in plan] == [Program.AWV, Program.CODING, Program.RPM]
    assert [item.total_estimated_revenue for item in plan] == [25_000, 10_000, 3_000]
    assert [item.priority for item in plan] == [1, 2, 3]
    assert plan[0].affected_providers == 1
    assert "1 provider is" in plan[0].description


def test_practice_action_thresholds_are_exclusive():
    providers = [_summary("1111111111", coding_gap=5_000.0, ccm_gap=3_000.0),
                 _summary("2222222222", coding_gap=5_001.0)]
    plan = build_practice_action_plan(providers)
    assert len(plan) == 1
    assert plan[0].category == Program.CODING
    assert plan[0].affected_providers == 1
    assert plan[0].total_estimated_revenue == 5_001


def test_specialty_breakdown_sorted_by_count():
    providers = [
        _summary("1111111111", specialty="Cardiology", current=300_000),
        _summary("2222222222", specialty="Family Medicine", current=100_000),
        _summary("3333333333", specialty="Family Medicine", current=150_000),
    ]
    groups = aggregate(providers).specialty_breakdown
    assert [(g.specialty, g.count) for g in groups] == [("Family Medicine", 2), ("Cardiology", 1)]
    assert groups[0].total_revenue == 250_000


def test_data_provenance_counts():
    estimated = _summary("3333333333")
    estimated.data_source = DataSource.ESTIMATED
    providers = [_summary("1111111111"), _summary("2222222222"), estimated,
                 failed_summary("4444444444", "not found")]
    result = aggregate(providers)
    assert result.cms_data_count == 2
    assert result.estimated_data_count == 1


def test_summarize_failed_entry(benchmarks):
    entry = BatchEntry(npi="1111111111", error="NPI 1111111111 not found", error_kind="not_found")
    s = summarize_provider("1111111111", entry, benchmarks)
    assert s.status == ScanStatus.FAILED
    assert s.error == "NPI 1111111111 not found"


def test_summarize_unknown_specialty_uses_default(benchmarks):
    record = make_record("1111111111", specialty="Space Medicine")
    s = summarize_provider("1111111111", BatchEntry(npi="1111111111", record=record), benchmarks)
    assert s.status == ScanStatus.SUCCESS
    assert s.scan.benchmark.specialty == "Internal Medicine"
    assert s.specialty == "Space Medicine"


def test_group_result_from_identical_providers(benchmarks):
    # Same panel and coding; only the second provider bills CCM
    non_adopter = make_record("1111111111")
    adopter = make_record("2222222222", ccm_services=1200, ccm_payment=79_200.0)
    scan_map = {
        "1111111111": BatchEntry(npi="1111111111", record=non_adopter),
        "2222222222": BatchEntry(npi="2222222222", record=adopter),
    }
    result = build_group_result(scan_map, benchmarks, "Twin Practice")

    first, second = result.providers
    assert first.ccm_gap > second.ccm_gap > 0
    assert second.revenue_score > first.revenue_score

    ccm = result.program_adoption["ccm"]
    assert ccm.enrolled == 100
    assert 0 < ccm.rate <= 1
    for adoption in result.program_adoption.values():
        assert 0 <= adoption.rate <= 1
        assert adoption.enrolled <= adoption.eligible or adoption.eligible == 0

    assert result.total_missed_revenue == first.missed_revenue + second.missed_revenue
    assert result.cms_data_count == 2


def test_scan_practice_end_to_end(benchmarks):
    npis = ["1111111111", "2222222222", "3333333333"]
    resolver = FakeResolver(
        records={npi: make_record(npi) for npi in npis[:2]},
        failures={npis[2]: NotFoundError("NPI 3333333333 not found")},
    )
    result = asyncio.run(scan_practice(npis, resolver, benchmarks, practice_name="Main Street"))

    assert result.practice_name == "Main Street"
    assert result.total_providers == 3
    assert result.successful_scans == 2
    assert result.failed_scans == 1
    assert [p.npi for p in result.providers] == npis
    failed = result.providers[2]
    assert failed.status == ScanStatus.FAILED
    assert "not found" in failed.error
    assert result.scanned_at


def test_malformed_entry_degrades_to_failed(benchmarks):
    scan_map = {
        "1111111111": BatchEntry(npi="1111111111", record=make_record("1111111111")),
        "2222222222": BatchEntry(npi="2222222222", record={"npi": "2222222222"}),
    }
    result = build_group_result(scan_map, benchmarks)

    assert result.successful_scans == 1
    assert result.failed_scans == 1
    broken = result.providers[1]
    assert broken.status == ScanStatus.FAILED
    assert broken.error.startswith("Could not score provider")


def test_scoring_error_degrades_to_failed(benchmarks, monkeypatch):
    def reject(record, benchmark, rules):
        raise InvalidInputError("bad record")

    monkeypatch.setattr(practice, "scan_provider", reject)
    entry = BatchEntry(npi="1111111111", record=make_record("1111111111"))
    s = summarize_provider("1111111111", entry, benchmarks)
    assert s.status == ScanStatus.FAILED
    assert s.error == "Could not score provider: bad record"
