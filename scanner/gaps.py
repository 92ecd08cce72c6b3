"""Missed-revenue estimates for E&M coding and the four care-management programs."""

from data.errors import InvalidInputError
from data.models import (
    ActionItem,
    Difficulty,
    GapEstimate,
    Program,
    ProviderBillingRecord,
    ProviderScan,
    SpecialtyBenchmark,
)
from scanner.programs import EM_RATES, PROGRAM_RULES, ProgramRule
from scanner.scoring import calculate_score

# Uplift of moving one visit up to this level from the level below it
EM_UPLIFT = {
    "99214": EM_RATES["99214"] - EM_RATES["99213"],
    "99215": EM_RATES["99215"] - EM_RATES["99214"],
}

ACTION_TEMPLATES = {
    Program.CODING: {
        "title": "Optimize E&M Coding Documentation",
        "description": (
            "Review documentation templates to support higher-level E&M codes. Document "
            "medical decision-making complexity, diagnoses addressed and data reviewed, "
            "and audit recent claims for undercoding."
        ),
        "timeline": "Weeks 1-4",
        "difficulty": Difficulty.EASY,
    },
    Program.AWV: {
        "title": "Launch Annual Wellness Visit Program",
        "description": (
            "Add a Health Risk Assessment intake, train MA staff on the AWV workflow and "
            "contact Medicare patients without a wellness visit in the past 12 months."
        ),
        "timeline": "Weeks 2-6",
        "difficulty": Difficulty.EASY,
    },
    Program.CCM: {
        "title": "Implement Chronic Care Management (99490)",
        "description": (
            "Identify patients with two or more chronic conditions, set up consent, care "
            "plan templates and monthly time tracking. Start with the most complex patients."
        ),
        "timeline": "Weeks 3-8",
        "difficulty": Difficulty.MEDIUM,
    },
    Program.RPM: {
        "title": "Deploy Remote Patient Monitoring",
        "description": (
            "Partner with a device vendor for blood pressure and glucose monitoring, enroll "
            "hypertension and diabetes patients first and route alerts to clinical staff."
        ),
        "timeline": "Weeks 6-12",
        "difficulty": Difficulty.HARD,
    },
    Program.BHI: {
        "title": "Add Behavioral Health Integration",
        "description": (
            "Screen with PHQ-9 at every visit, train providers on 99484 billing and build "
            "care plans for patients who screen positive."
        ),
        "timeline": "Weeks 4-10",
        "difficulty": Difficulty.MEDIUM,
    },
}


def estimate_coding_gap(record: ProviderBillingRecord | None,
                        benchmark: SpecialtyBenchmark | None) -> GapEstimate:
    """Revenue lost to coding fewer 99214/99215 visits than specialty peers.

    Each level below its benchmark share is valued at the uplift from the
    level beneath it. Levels already above benchmark contribute nothing.
    """
    _check(record, benchmark)
    total = record.em_total
    counts = record.em_counts

    gap = 0.0
    shares = {}
    expected_high = 0
    for level, uplift in EM_UPLIFT.items():
        actual = counts[level] / total if total else 0.0
        target = benchmark.em_share(level)
        shares[level] = {"actual": round(actual, 4), "benchmark": round(target, 4)}
        gap += max(0.0, target - actual) * total * uplift
        expected_high += round(total * target)

    current_high = counts["99214"] + counts["99215"]
    current_revenue = sum(counts[level] * rate for level, rate in EM_RATES.items())

    shift = round((benchmark.em_share("99213") - (counts["99213"] / total if total else 0.0)) * total)
    if shift < 0 and gap > 0:
        shifts_needed = f"Shift ~{abs(shift)} visits from 99213 to higher-level codes"
    else:
        shifts_needed = "E&M distribution is close to benchmark"

    return GapEstimate(
        program=Program.CODING,
        code="99213-99215",
        current_patients=current_high,
        eligible_patients=max(current_high, expected_high),
        annual_gap=round(gap),
        current_annual_revenue=round(current_revenue),
        potential_annual_revenue=round(current_revenue + gap),
        detail={"em_total": total, "shares": shares, "shifts_needed": shifts_needed},
    )


def estimate_program_gap(record: ProviderBillingRecord | None,
                         benchmark: SpecialtyBenchmark | None,
                         rule: ProgramRule) -> GapEstimate:
    """Shared estimator for CCM, RPM, BHI and AWV.

    Eligible patients are a capped share of the panel scaled from the
    specialty's adoption rate. Providers who already bill the program are
    only credited with the eligible patients they haven't enrolled yet. Programs
    the specialty barely uses carry no gap for adopters or non-adopters.
    """
    _check(record, benchmark)
    services = getattr(record, f"{rule.program.value}_services")
    payment = getattr(record, f"{rule.program.value}_payment")
    adoption = benchmark.adoption_rate(rule.program)
    annual_rate = rule.unit_rate * rule.duration_multiplier

    current = max(1, round(services / rule.services_per_patient)) if services > 0 else 0
    share = min(rule.eligibility_cap, adoption * rule.adoption_multiplier)
    eligible = max(current, round(record.total_beneficiaries * share))

    if adoption < rule.min_adoption_rate:
        gap = 0.0
    elif current > 0:
        gap = (eligible - current) * annual_rate
    else:
        gap = eligible * annual_rate

    current_revenue = payment if payment > 0 else current * annual_rate
    return GapEstimate(
        program=rule.program,
        code=rule.code,
        current_patients=current,
        eligible_patients=eligible,
        annual_gap=round(gap),
        current_annual_revenue=round(current_revenue),
        potential_annual_revenue=round(current_revenue + gap),
        detail={"benchmark_adoption_rate": adoption, "eligible_share": round(share, 4)},
    )


def estimate_ccm_gap(record, benchmark, rules=PROGRAM_RULES) -> GapEstimate:
    return estimate_program_gap(record, benchmark, rules[Program.CCM])


def estimate_rpm_gap(record, benchmark, rules=PROGRAM_RULES) -> GapEstimate:
    return estimate_program_gap(record, benchmark, rules[Program.RPM])


def estimate_bhi_gap(record, benchmark, rules=PROGRAM_RULES) -> GapEstimate:
    return estimate_program_gap(record, benchmark, rules[Program.BHI])


def estimate_awv_gap(record, benchmark, rules=PROGRAM_RULES) -> GapEstimate:
    return estimate_program_gap(record, benchmark, rules[Program.AWV])


def scan_provider(record: ProviderBillingRecord, benchmark: SpecialtyBenchmark,
                  rules: dict[Program, ProgramRule] = PROGRAM_RULES) -> ProviderScan:
    """Score one provider and estimate every program gap."""
    score = calculate_score(record, benchmark)
    scan = ProviderScan(
        record=record,
        benchmark=benchmark,
        score=score,
        coding_gap=estimate_coding_gap(record, benchmark),
        ccm_gap=estimate_ccm_gap(record, benchmark, rules),
        rpm_gap=estimate_rpm_gap(record, benchmark, rules),
        bhi_gap=estimate_bhi_gap(record, benchmark, rules),
        awv_gap=estimate_awv_gap(record, benchmark, rules),
    )
    scan.total_missed_revenue = sum(scan.gap(p).annual_gap for p in Program)
    scan.action_plan = build_action_plan(scan)
    return scan


def build_action_plan(scan: ProviderScan) -> list[ActionItem]:
    """One action per program with a positive gap, biggest first."""
    gaps = sorted((scan.gap(p) for p in Program), key=lambda g: g.annual_gap, reverse=True)

    items = []
    for gap in gaps:
        if gap.annual_gap <= 0:
            continue
        template = ACTION_TEMPLATES[gap.program]
        items.append(ActionItem(
            priority=len(items) + 1,
            title=template["title"],
            description=template["description"],
            timeline=template["timeline"],
            estimated_revenue=gap.annual_gap,
            difficulty=template["difficulty"],
            category=gap.program,
        ))
    return items


def _check(record, benchmark) -> None:
    if record is None or benchmark is None:
        raise InvalidInputError("Gap estimation needs both a billing record and a benchmark")
