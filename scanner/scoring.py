import math

from data.errors import InvalidInputError
from data.models import (
    ProviderBillingRecord,
    Program,
    RevenueScoreResult,
    ScoreBreakdown,
    ScoreTier,
    SpecialtyBenchmark,
)

SCORE_TIERS = [
    ScoreTier(min=90, max=100, label="Elite", hex_color="#E8A824"),
    ScoreTier(min=75, max=89, label="Strong", hex_color="#34d399"),
    ScoreTier(min=60, max=74, label="Average", hex_color="#facc15"),
    ScoreTier(min=40, max=59, label="Below Average", hex_color="#fb923c"),
    ScoreTier(min=0, max=39, label="Critical", hex_color="#f87171"),
]

WEIGHTS = {
    "em_coding": 0.30,
    "program_utilization": 0.25,
    "revenue_efficiency": 0.20,
    "service_diversity": 0.10,
    "patient_volume": 0.15,
}

NEUTRAL_SCORE = 50  # sub-score when the provider or specialty doesn't use the service

# Share weights of 99214 vs 99215 in the coding score, and the cap on
# how far above benchmark a provider is rewarded
EM_HIGH_LEVEL_WEIGHTS = {"99214": 0.6, "99215": 0.4}
EM_RATIO_CAP = 1.2
UNDERCODING_PENALTY = 50  # points per unit of excess 99211-99213 share

# Points per program; AWV is the most broadly applicable so it counts most
PROGRAM_POINTS = {Program.CCM: 25, Program.RPM: 20, Program.BHI: 15, Program.AWV: 40}
MIN_RELEVANT_ADOPTION = 0.01

DIVERSITY_BUCKETS = [(20, 100), (15, 85), (10, 70), (6, 55), (3, 35)]
DIVERSITY_FLOOR = 15

# A panel equal to the specialty average scores 80
VOLUME_CURVE = math.log(5)


def get_score_tier(score: int) -> ScoreTier:
    for tier in SCORE_TIERS:
        if score >= tier.min:
            return tier
    return SCORE_TIERS[-1]


def calculate_score(record: ProviderBillingRecord | None,
                    benchmark: SpecialtyBenchmark | None) -> RevenueScoreResult:
    """Score a provider's billing against their specialty benchmark.

    Five sub-scores, each 0-100, are combined with fixed weights (see WEIGHTS):
    E&M coding intensity, program utilization, revenue per patient, breadth
    of services billed, and patient panel size.
    """
    if record is None or benchmark is None:
        raise InvalidInputError("calculate_score needs both a billing record and a benchmark")

    breakdown = ScoreBreakdown(
        em_coding=_em_coding_score(record, benchmark),
        program_utilization=_program_score(record, benchmark),
        revenue_efficiency=_efficiency_score(record, benchmark),
        service_diversity=_diversity_score(record),
        patient_volume=_volume_score(record, benchmark),
    )
    weighted = sum(getattr(breakdown, name) * weight for name, weight in WEIGHTS.items())
    overall = _clamp(round(weighted))
    tier = get_score_tier(overall)

    return RevenueScoreResult(overall=overall, label=tier.label, color=tier.hex_color,
                              breakdown=breakdown)


def estimate_percentile(score: int) -> int:
    """Approximate national percentile for a score, assuming a bell-shaped spread."""
    if score >= 90:
        return min(99, 95 + round((score - 90) * 0.5))
    if score >= 75:
        return 70 + round((score - 75) * 1.67)
    if score >= 60:
        return 35 + round((score - 60) * 2.33)
    if score >= 40:
        return 10 + round((score - 40) * 1.25)
    return max(1, round(score * 0.25))


def _em_coding_score(record: ProviderBillingRecord, benchmark: SpecialtyBenchmark) -> int:
    total = record.em_total
    if total <= 0:
        # Pathologists, radiologists etc. bill no office visits
        return NEUTRAL_SCORE

    counts = record.em_counts
    high = 0.0
    for level, weight in EM_HIGH_LEVEL_WEIGHTS.items():
        actual = counts[level] / total
        bench = max(benchmark.em_share(level), 0.01)
        high += min(actual / bench, EM_RATIO_CAP) * weight

    low_levels = ("99211", "99212", "99213")
    actual_low = sum(counts[level] for level in low_levels) / total
    bench_low = sum(benchmark.em_share(level) for level in low_levels)
    excess_low = max(0.0, actual_low - bench_low)

    return _clamp(round(high * 100 - excess_low * UNDERCODING_PENALTY))


def _program_score(record: ProviderBillingRecord, benchmark: SpecialtyBenchmark) -> int:
    billed = {
        Program.CCM: record.ccm_services,
        Program.RPM: record.rpm_services,
        Program.BHI: record.bhi_services,
        Program.AWV: record.awv_services,
    }
    relevant = [p for p in PROGRAM_POINTS if benchmark.adoption_rate(p) >= MIN_RELEVANT_ADOPTION]
    if not relevant:
        return NEUTRAL_SCORE

    possible = sum(PROGRAM_POINTS[p] for p in relevant)
    earned = sum(PROGRAM_POINTS[p] for p in relevant if billed[p] > 0)
    return _clamp(round(earned / possible * 100))


def _efficiency_score(record: ProviderBillingRecord, benchmark: SpecialtyBenchmark) -> int:
    if record.total_beneficiaries <= 0:
        return 0
    if benchmark.avg_revenue_per_patient <= 0:
        return NEUTRAL_SCORE
    per_patient = record.total_medicare_payment / record.total_beneficiaries
    return _clamp(round(min(per_patient / benchmark.avg_revenue_per_patient, 1.0) * 100))


def _diversity_score(record: ProviderBillingRecord) -> int:
    codes = record.distinct_code_count
    if codes is None:
        services = list(record.em_counts.values()) + [
            record.ccm_services, record.rpm_services, record.bhi_services, record.awv_services,
        ]
        codes = sum(1 for count in services if count > 0)

    for minimum, score in DIVERSITY_BUCKETS:
        if codes >= minimum:
            return score
    return DIVERSITY_FLOOR


def _volume_score(record: ProviderBillingRecord, benchmark: SpecialtyBenchmark) -> int:
    if benchmark.avg_medicare_patients <= 0:
        return NEUTRAL_SCORE
    ratio = record.total_beneficiaries / benchmark.avg_medicare_patients
    return _clamp(round((1 - math.exp(-VOLUME_CURVE * ratio)) * 100))


def _clamp(value: int) -> int:
    return max(0, min(100, value))
