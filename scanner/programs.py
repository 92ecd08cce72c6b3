"""Medicare rates and eligibility heuristics for the billing programs.

Rates are 2024 national non-facility averages. The adoption multiplier and
eligibility cap turn a specialty's program adoption rate into the share of a
provider's panel that plausibly qualifies for the program.
"""

from dataclasses import dataclass, replace
from pathlib import Path

import polars as pl

from data.errors import InvalidInputError
from data.models import Program

# Medicare payment per E&M office visit level
EM_RATES = {
    "99211": 23.38,
    "99212": 57.31,
    "99213": 92.03,
    "99214": 130.04,
    "99215": 176.15,
}


@dataclass(frozen=True)
class ProgramRule:
    program: Program
    name: str
    code: str
    unit_rate: float  # Medicare payment per patient-month (per visit for AWV)
    duration_multiplier: int  # billable units per patient per year
    adoption_multiplier: float
    eligibility_cap: float  # max share of the panel counted as eligible
    min_adoption_rate: float  # below this the specialty doesn't use the program
    services_per_patient: int  # services billed per enrolled patient per year


PROGRAM_RULES: dict[Program, ProgramRule] = {
    Program.CCM: ProgramRule(
        program=Program.CCM,
        name="Chronic Care Management",
        code="99490",
        unit_rate=66.00,
        duration_multiplier=12,
        adoption_multiplier=5.0,
        eligibility_cap=0.25,
        min_adoption_rate=0.005,
        services_per_patient=12,
    ),
    Program.RPM: ProgramRule(
        program=Program.RPM,
        name="Remote Patient Monitoring",
        code="99454/99457",
        unit_rate=55.72 + 48.80,  # device supply + first 20 min of management
        duration_multiplier=12,
        adoption_multiplier=6.0,
        eligibility_cap=0.20,
        min_adoption_rate=0.005,
        services_per_patient=12,
    ),
    Program.BHI: ProgramRule(
        program=Program.BHI,
        name="Behavioral Health Integration",
        code="99484",
        unit_rate=48.56,
        duration_multiplier=12,
        adoption_multiplier=10.0,
        eligibility_cap=0.15,
        min_adoption_rate=0.001,
        services_per_patient=12,
    ),
    Program.AWV: ProgramRule(
        program=Program.AWV,
        name="Annual Wellness Visit",
        code="G0438/G0439",
        unit_rate=118.88,  # subsequent AWV
        duration_multiplier=1,
        adoption_multiplier=1.5,
        eligibility_cap=0.50,
        min_adoption_rate=0.01,
        services_per_patient=1,
    ),
}

RULE_COLUMNS = (
    "unit_rate",
    "duration_multiplier",
    "adoption_multiplier",
    "eligibility_cap",
    "min_adoption_rate",
    "services_per_patient",
)


def load_program_rules(filepath: Path) -> dict[Program, ProgramRule]:
    """Override the default program table from a CSV with one row per program.

    The file needs a ``program`` column (ccm, rpm, bhi, awv); any of the
    numeric rule columns it carries replace the defaults. Programs missing
    from the file keep their default rule.
    """
    df = pl.read_csv(filepath)
    if "program" not in df.columns:
        raise InvalidInputError(f"{filepath} has no 'program' column")

    rules = dict(PROGRAM_RULES)
    for row in df.iter_rows(named=True):
        try:
            program = Program(str(row["program"]).strip().lower())
        except ValueError:
            raise InvalidInputError(f"Unknown program '{row['program']}' in {filepath}")
        if program not in rules:
            raise InvalidInputError(f"E&M coding rates are not configurable per row ({filepath})")

        overrides = {}
        for col in RULE_COLUMNS:
            if row.get(col) is not None:
                cast = int if col in ("duration_multiplier", "services_per_patient") else float
                overrides[col] = cast(row[col])
        rules[program] = replace(rules[program], **overrides)

    return rules
