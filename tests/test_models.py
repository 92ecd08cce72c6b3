"""Tests for data models."""

import json

from data.models import (
    DataSource,
    GapEstimate,
    GroupScanResult,
    Program,
    ProviderScanSummary,
    ScanStatus,
    TierCount,
)
from tests.conftest import FAMILY_MEDICINE, make_record


def test_program_values():
    assert Program.CODING.value == "coding"
    assert Program.AWV.value == "awv"
    assert len(Program) == 5


def test_billing_record_defaults():
    record = make_record()
    assert record.ccm_services == 0
    assert record.rpm_payment == 0.0
    assert record.data_source == DataSource.CMS


def test_em_counts_and_total():
    record = make_record(em_99211=1, em_99212=2, em_99213=3, em_99214=4, em_99215=5)
    assert record.em_counts == {"99211": 1, "99212": 2, "99213": 3, "99214": 4, "99215": 5}
    assert record.em_total == 15


def test_benchmark_lookups():
    assert FAMILY_MEDICINE.adoption_rate(Program.CCM) == 0.052
    assert FAMILY_MEDICINE.adoption_rate(Program.AWV) == 0.5352
    assert FAMILY_MEDICINE.em_share("99214") == 0.6133


def test_capture_rate_with_no_eligible_patients():
    gap = GapEstimate(program=Program.CCM, code="99490", current_patients=0,
                      eligible_patients=0, annual_gap=0)
    assert gap.capture_rate == 0.0


def test_summary_defaults():
    s = ProviderScanSummary(npi="1234567890", full_name="Provider 1234567890")
    assert s.status == ScanStatus.SUCCESS
    assert s.data_source == DataSource.ESTIMATED
    assert s.scan is None
    assert s.gap(Program.RPM) == 0.0


def test_group_result_to_dict_is_json_ready():
    failed = ProviderScanSummary(npi="1234567890", full_name="Provider 1234567890",
                                 status=ScanStatus.FAILED, error="not found")
    result = GroupScanResult(
        practice_name="Test Practice",
        scanned_at="2024-01-01T00:00:00+00:00",
        providers=[failed],
        total_providers=1,
        failed_scans=1,
        score_distribution=[TierCount(tier="Critical", count=1, color="#f87171")],
    )
    d = result.to_dict()
    assert d["providers"][0]["status"] == "failed"
    assert d["providers"][0]["data_source"] == "estimated"
    assert d["top_performer"] is None
    # Serializes without a custom encoder
    json.dumps(d)
