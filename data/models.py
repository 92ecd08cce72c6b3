from dataclasses import asdict, dataclass, field
from enum import Enum


class DataSource(Enum):
    CMS = "cms"
    ESTIMATED = "estimated"


class ScanStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Program(Enum):
    CODING = "coding"
    CCM = "ccm"
    RPM = "rpm"
    BHI = "bhi"
    AWV = "awv"


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


EM_LEVELS = ("99211", "99212", "99213", "99214", "99215")


@dataclass(frozen=True)
class ProviderBillingRecord:
    """One provider's Medicare billing for a year, normalized from CMS data."""
    npi: str
    name: str = ""
    credential: str = ""
    specialty: str = ""
    city: str = ""
    state: str = ""
    total_medicare_payment: float = 0.0
    total_beneficiaries: int = 0
    total_services: int = 0
    # E&M office visits, one bucket per level
    em_99211: int = 0
    em_99212: int = 0
    em_99213: int = 0
    em_99214: int = 0
    em_99215: int = 0
    # Program service counts (CCM/RPM/BHI billed monthly, AWV once a year)
    ccm_services: int = 0
    rpm_services: int = 0
    bhi_services: int = 0
    awv_services: int = 0
    ccm_payment: float = 0.0
    rpm_payment: float = 0.0
    bhi_payment: float = 0.0
    awv_payment: float = 0.0
    distinct_code_count: int | None = None  # None when code-level data is unavailable
    data_source: DataSource = DataSource.CMS

    @property
    def em_counts(self) -> dict[str, int]:
        return {level: getattr(self, f"em_{level}") for level in EM_LEVELS}

    @property
    def em_total(self) -> int:
        return sum(self.em_counts.values())


@dataclass(frozen=True)
class SpecialtyBenchmark:
    """Specialty-level averages and program adoption rates."""
    specialty: str
    provider_count: int = 0
    avg_medicare_patients: float = 0.0
    avg_total_payment: float = 0.0
    avg_revenue_per_patient: float = 0.0
    pct_99211: float = 0.0
    pct_99212: float = 0.0
    pct_99213: float = 0.0
    pct_99214: float = 0.0
    pct_99215: float = 0.0
    ccm_adoption_rate: float = 0.0  # fraction of providers billing the program
    rpm_adoption_rate: float = 0.0
    bhi_adoption_rate: float = 0.0
    awv_adoption_rate: float = 0.0

    def adoption_rate(self, program: Program) -> float:
        return getattr(self, f"{program.value}_adoption_rate")

    def em_share(self, level: str) -> float:
        return getattr(self, f"pct_{level}")


@dataclass(frozen=True)
class ScoreTier:
    min: int
    max: int
    label: str
    hex_color: str


@dataclass
class ScoreBreakdown:
    em_coding: int
    program_utilization: int
    revenue_efficiency: int
    service_diversity: int
    patient_volume: int


@dataclass
class RevenueScoreResult:
    """Composite 0-100 revenue health score."""
    overall: int
    label: str
    color: str
    breakdown: ScoreBreakdown


@dataclass
class GapEstimate:
    """Estimated annual revenue a provider leaves on the table for one program."""
    program: Program
    code: str
    current_patients: int
    eligible_patients: int
    annual_gap: int
    current_annual_revenue: int = 0
    potential_annual_revenue: int = 0
    detail: dict = field(default_factory=dict)

    @property
    def capture_rate(self) -> float:
        if self.eligible_patients <= 0:
            return 0.0
        return self.current_patients / self.eligible_patients


@dataclass
class ActionItem:
    """A recommended step for a single provider."""
    priority: int
    title: str
    description: str
    timeline: str
    estimated_revenue: int
    difficulty: Difficulty
    category: Program


@dataclass
class ProviderScan:
    """Score, gaps and action plan for one provider."""
    record: ProviderBillingRecord
    benchmark: SpecialtyBenchmark
    score: RevenueScoreResult
    coding_gap: GapEstimate
    ccm_gap: GapEstimate
    rpm_gap: GapEstimate
    bhi_gap: GapEstimate
    awv_gap: GapEstimate
    total_missed_revenue: int = 0
    action_plan: list[ActionItem] = field(default_factory=list)

    def gap(self, program: Program) -> GapEstimate:
        return getattr(self, f"{program.value}_gap")


@dataclass
class ProviderScanSummary:
    """One row of a group scan: a provider's headline numbers or a failure."""
    npi: str
    full_name: str
    credential: str = ""
    specialty: str = ""
    city: str = ""
    state: str = ""
    revenue_score: int = 0
    score_tier: str = ""
    score_color: str = ""
    current_revenue: float = 0.0
    missed_revenue: float = 0.0
    potential_revenue: float = 0.0
    coding_gap: float = 0.0
    ccm_gap: float = 0.0
    rpm_gap: float = 0.0
    bhi_gap: float = 0.0
    awv_gap: float = 0.0
    data_source: DataSource = DataSource.ESTIMATED
    status: ScanStatus = ScanStatus.SUCCESS
    error: str = ""
    scan: ProviderScan | None = None

    def gap(self, program: Program) -> float:
        return getattr(self, f"{program.value}_gap")


@dataclass
class PracticeActionItem:
    """A practice-wide intervention covering every provider with the same gap."""
    priority: int
    title: str
    description: str
    affected_providers: int
    total_estimated_revenue: float
    difficulty: Difficulty
    category: Program


@dataclass
class ProgramAdoption:
    enrolled: int = 0
    eligible: int = 0
    rate: float = 0.0  # enrolled / eligible


@dataclass
class TierCount:
    tier: str
    count: int
    color: str


@dataclass
class SpecialtyGroup:
    specialty: str
    count: int
    total_revenue: float


@dataclass
class GroupScanResult:
    """Practice-level report built from a batch of provider scans."""
    practice_name: str
    scanned_at: str
    providers: list[ProviderScanSummary] = field(default_factory=list)

    total_providers: int = 0
    successful_scans: int = 0
    failed_scans: int = 0

    total_current_revenue: float = 0.0
    total_missed_revenue: float = 0.0
    total_potential_revenue: float = 0.0
    revenue_increase_pct: int = 0

    average_revenue_score: int = 0
    score_distribution: list[TierCount] = field(default_factory=list)

    total_coding_gap: float = 0.0
    total_ccm_gap: float = 0.0
    total_rpm_gap: float = 0.0
    total_bhi_gap: float = 0.0
    total_awv_gap: float = 0.0

    program_adoption: dict[str, ProgramAdoption] = field(default_factory=dict)
    specialty_breakdown: list[SpecialtyGroup] = field(default_factory=list)

    top_performer: ProviderScanSummary | None = None
    bottom_performer: ProviderScanSummary | None = None
    biggest_opportunity: ProviderScanSummary | None = None

    practice_action_plan: list[PracticeActionItem] = field(default_factory=list)

    cms_data_count: int = 0
    estimated_data_count: int = 0

    def to_dict(self) -> dict:
        """Plain JSON-serializable form of the report."""
        return asdict(self, dict_factory=_json_dict)


def _json_dict(items: list[tuple]) -> dict:
    return {key: value.value if isinstance(value, Enum) else value for key, value in items}
