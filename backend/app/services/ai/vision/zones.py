"""Zone assignment and compliance scoring.

Specs are bucketed into physical inspection zones by keyword: the first zone
(in declared order) with a keyword contained in the requirement text wins,
anything else lands in ``general``.  This is order dependent: a
requirement mentioning both "fire" and "kitchen" is filed under the kitchen.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .contracts import AnalysisResult, ChecklistSpec, Severity, SweepDirection, Verdict

GENERAL_ZONE_ID = "general"
GENERAL_ZONE_NAME = "General"
GENERAL_ZONE_NAME_AR = "عام"


@dataclass(frozen=True)
class InspectionZone:
    id: str
    name: str
    name_ar: str
    order: int
    guidance: str
    guidance_ar: str
    keywords: tuple[str, ...]

    def matches(self, requirement: str) -> bool:
        text = requirement.lower()
        return any(keyword.lower() in text for keyword in self.keywords)


@dataclass(frozen=True)
class SweepStep:
    direction: SweepDirection
    target: str
    label: str
    label_ar: str


INSPECTION_ZONES: tuple[InspectionZone, ...] = (
    InspectionZone(
        id="exterior",
        name="Exterior & Entrance",
        name_ar="الخارج والمدخل",
        order=1,
        guidance="Start outside. Capture the building front, entrance, and surrounding area.",
        guidance_ar="ابدأ من الخارج. التقط واجهة المبنى والمدخل والمنطقة المحيطة.",
        keywords=(
            "entrance", "exterior", "external", "sign", "signage", "parking", "waste",
            "bin", "ramp", "outdoor", "outside", "front", "facade",
        ),
    ),
    InspectionZone(
        id="main_area",
        name="Main Hall / Dining",
        name_ar="الصالة الرئيسية",
        order=2,
        guidance="Enter the main area. Slowly scan ceiling, walls, floor, and windows.",
        guidance_ar="ادخل المنطقة الرئيسية. امسح ببطء السقف والجدران والأرضية والنوافذ.",
        keywords=(
            "ceiling", "wall", "floor", "window", "lighting", "light", "ventilation", "air",
            "screen", "insect", "tile", "smooth", "crack", "surface",
        ),
    ),
    InspectionZone(
        id="kitchen",
        name="Kitchen / Prep Area",
        name_ar="المطبخ / منطقة التحضير",
        order=3,
        guidance="Move to kitchen. Scan surfaces, equipment, and handwash stations.",
        guidance_ar="انتقل إلى المطبخ. امسح الأسطح والمعدات ومحطات غسل اليدين.",
        keywords=(
            "food", "prep", "cook", "kitchen", "wash", "sink", "equipment", "temperature",
            "stainless", "refriger", "freezer", "oven", "hood", "exhaust",
        ),
    ),
    InspectionZone(
        id="storage",
        name="Storage Areas",
        name_ar="مناطق التخزين",
        order=4,
        guidance="Check all storage rooms. Scan shelves, labels, and floor clearance.",
        guidance_ar="افحص جميع غرف التخزين. امسح الأرفف والملصقات والمسافة من الأرض.",
        keywords=(
            "storage", "shelf", "shelving", "chemical", "label", "FIFO", "store", "stock",
            "inventory", "dry", "cold",
        ),
    ),
    InspectionZone(
        id="restrooms",
        name="Restrooms & Facilities",
        name_ar="دورات المياه والمرافق",
        order=5,
        guidance="Inspect restrooms. Check handwash, soap, ventilation, self-closing doors.",
        guidance_ar="افحص دورات المياه. تحقق من غسل اليدين والصابون والتهوية والأبواب ذاتية الإغلاق.",
        keywords=(
            "restroom", "toilet", "handwash", "soap", "sanitary", "bathroom", "lavatory",
            "tissue", "towel", "dryer",
        ),
    ),
    InspectionZone(
        id="safety",
        name="Safety & Emergency",
        name_ar="السلامة والطوارئ",
        order=6,
        guidance="Check fire safety equipment, exit routes, and emergency signage throughout.",
        guidance_ar="تحقق من معدات السلامة من الحريق ومسارات الخروج ولافتات الطوارئ.",
        keywords=(
            "fire", "exit", "extinguisher", "alarm", "emergency", "first aid", "evacuation",
            "smoke", "detector", "sprinkler",
        ),
    ),
)

SWEEP_SEQUENCE: tuple[SweepStep, ...] = (
    SweepStep(SweepDirection.UP, "ceiling", "Look UP at ceiling", "انظر للأعلى نحو السقف"),
    SweepStep(SweepDirection.FORWARD, "walls", "Scan walls left to right", "امسح الجدران من اليسار لليمين"),
    SweepStep(SweepDirection.DOWN, "floor", "Look DOWN at floor", "انظر للأسفل نحو الأرضية"),
    SweepStep(SweepDirection.AROUND, "windows", "Pan around for windows & doors", "تحرك حول النوافذ والأبواب"),
    SweepStep(SweepDirection.DETAIL, "equipment", "Move closer for details", "اقترب للتفاصيل"),
)

_ZONES_BY_ID = {zone.id: zone for zone in INSPECTION_ZONES}

SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.MAJOR: 1,
    Severity.MINOR: 2,
    Severity.OK: 3,
}


def assign_zone(requirement: str) -> str:
    """Return the id of the first zone whose keywords occur in *requirement*."""
    for zone in INSPECTION_ZONES:
        if zone.matches(requirement):
            return zone.id
    return GENERAL_ZONE_ID


def zone_name(zone_id: str) -> str:
    zone = _ZONES_BY_ID.get(zone_id)
    return zone.name if zone else GENERAL_ZONE_NAME


def zone_name_ar(zone_id: str) -> str:
    zone = _ZONES_BY_ID.get(zone_id)
    return zone.name_ar if zone else GENERAL_ZONE_NAME_AR


class ZoneAssignment:
    """Spec-to-zone mapping for one checklist set.

    Built once and read-only afterwards, so a single instance can be shared
    between concurrent requests.
    """

    def __init__(self, by_id: dict[str, str], by_code: dict[str, str]) -> None:
        self._by_id = MappingProxyType(dict(by_id))
        self._by_code = MappingProxyType(dict(by_code))

    @classmethod
    def from_specs(cls, specs: Iterable[ChecklistSpec]) -> ZoneAssignment:
        by_id: dict[str, str] = {}
        by_code: dict[str, str] = {}
        for spec in specs:
            zone_id = assign_zone(spec.requirement)
            if spec.id:
                by_id[spec.id] = zone_id
            by_code[spec.code] = zone_id
        return cls(by_id, by_code)

    def zone_for_id(self, spec_id: str) -> str:
        return self._by_id.get(spec_id, GENERAL_ZONE_ID)

    def zone_for_code(self, spec_code: str) -> str:
        return self._by_code.get(spec_code, GENERAL_ZONE_ID)

    def specs_in_zone(self, zone_id: str) -> list[str]:
        """Spec ids assigned to *zone_id*, in checklist order."""
        return [spec_id for spec_id, zid in self._by_id.items() if zid == zone_id]

    def as_dict(self) -> dict[str, list[str]]:
        """Zone id -> spec ids, every zone present (``general`` last)."""
        grouped: dict[str, list[str]] = {zone.id: [] for zone in INSPECTION_ZONES}
        grouped[GENERAL_ZONE_ID] = []
        for spec_id, zone_id in self._by_id.items():
            grouped[zone_id].append(spec_id)
        return grouped


@lru_cache(maxsize=64)
def _cached_assignment(key: tuple[tuple[str, str, str], ...]) -> ZoneAssignment:
    specs = [ChecklistSpec(id=spec_id, code=code, requirement=req) for spec_id, code, req in key]
    return ZoneAssignment.from_specs(specs)


def assignment_for(specs: Iterable[ChecklistSpec]) -> ZoneAssignment:
    """Zone assignment for a checklist set, computed once per distinct set."""
    return _cached_assignment(tuple((s.id, s.code, s.requirement) for s in specs))


class _ScoreModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ZoneScore(_ScoreModel):
    zone_id: str
    zone_name: str
    score: int
    passed: int
    total: int


class SeverityCounts(_ScoreModel):
    critical: int = 0
    major: int = 0
    minor: int = 0
    ok: int = 0


class PriorityAction(_ScoreModel):
    spec_code: str
    severity: Severity
    description: str
    description_ar: str
    zone: str
    zone_ar: str


class ComplianceScore(_ScoreModel):
    overall: int
    by_zone: list[ZoneScore]
    by_severity: SeverityCounts
    priority_actions: list[PriorityAction]


def _percent(passed: int, total: int) -> int:
    # Round half up.
    return int(passed * 100 / total + 0.5) if total else 0


def score(results: Sequence[AnalysisResult], assignment: ZoneAssignment) -> ComplianceScore:
    """Aggregate *results* into per-zone and overall compliance percentages.

    Pure: the same inputs always give an equal ``ComplianceScore``.
    """
    groups: dict[str, list[AnalysisResult]] = {}
    for result in results:
        groups.setdefault(assignment.zone_for_code(result.spec_code), []).append(result)

    zone_order = {zone.id: zone.order for zone in INSPECTION_ZONES}
    by_zone: list[ZoneScore] = []
    counts = {severity: 0 for severity in Severity}
    actions: list[PriorityAction] = []
    total_passed = 0

    for zone_id in sorted(groups, key=lambda zid: zone_order.get(zid, len(zone_order) + 1)):
        zone_results = groups[zone_id]
        passed = sum(1 for r in zone_results if r.result == Verdict.PASS)
        total_passed += passed
        by_zone.append(
            ZoneScore(
                zone_id=zone_id,
                zone_name=zone_name(zone_id),
                score=_percent(passed, len(zone_results)),
                passed=passed,
                total=len(zone_results),
            )
        )

    # Severity counts and priority actions follow the original result order.
    for result in results:
        counts[result.severity] += 1
        if result.result == Verdict.FAIL:
            zone_id = assignment.zone_for_code(result.spec_code)
            actions.append(
                PriorityAction(
                    spec_code=result.spec_code,
                    severity=result.severity,
                    description=result.finding,
                    description_ar=result.finding_ar,
                    zone=zone_name(zone_id),
                    zone_ar=zone_name_ar(zone_id),
                )
            )

    actions.sort(key=lambda a: SEVERITY_RANK.get(a.severity, 3))

    return ComplianceScore(
        overall=_percent(total_passed, len(results)),
        by_zone=by_zone,
        by_severity=SeverityCounts(
            critical=counts[Severity.CRITICAL],
            major=counts[Severity.MAJOR],
            minor=counts[Severity.MINOR],
            ok=counts[Severity.OK],
        ),
        priority_actions=actions,
    )
