"""Offline diagnosis synthesis.

The last-resort answer used when every AI provider has failed. Classifies
symptom text by keyword into fixed categories and assembles a conservative,
template-based DiagnosisResult. No I/O and no randomness: identical input
always produces an identical result.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import OFFLINE_PROVIDER, DiagnosisRequest, DiagnosisResult, Urgency

OFFLINE_CONFIDENCE = 0.3

IMMEDIATE_ACTION = (
    "Pull over at the first safe location and do not continue driving "
    "until the problem has been inspected"
)
SAFETY_FIRST = (
    "Treat this as a safety issue: verify braking, steering, and tire "
    "condition before moving the vehicle"
)
CONSULT_TECHNICIAN = (
    "Consult a qualified heavy-duty technician to confirm this offline "
    "assessment before starting repairs"
)


def keyword_pattern(keywords: Iterable[str]) -> re.Pattern[str]:
    """Compile keywords into one whole-word matcher.

    A keyword matches at a word start and may carry a plural or verb
    ending, so "brake" matches "brakes" and "overheat" matches
    "overheating", but "fire" does not match "misfire" and "abs" does
    not match "absorber".
    """
    alternatives = "|".join(
        re.escape(k) for k in sorted(set(keywords), key=len, reverse=True)
    )
    return re.compile(rf"\b(?:{alternatives})(?:s|es|ed|ing)?\b")


@dataclass(frozen=True)
class SymptomCategory:
    """Keyword rule and response templates for one symptom category."""

    name: str
    label: str
    keywords: tuple[str, ...]
    causes: tuple[str, ...]
    recommendations: tuple[str, ...]
    tools: tuple[str, ...]
    warnings: tuple[str, ...]
    cost_range: tuple[int, int]
    safety_critical: bool = False
    pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.keywords:
            raise ValueError(f"category {self.name} needs at least one keyword")
        object.__setattr__(self, "pattern", keyword_pattern(self.keywords))

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


# Order matters: brake rules come first so their recommendations lead.
CATEGORIES: tuple[SymptomCategory, ...] = (
    SymptomCategory(
        name="brake",
        label="brake system",
        keywords=("brake", "abs", "air pressure", "air leak", "stopping", "slack adjuster"),
        causes=(
            "Air brake system leak or low system air pressure",
            "Worn brake linings, drums, or out-of-adjustment slack adjusters",
            "ABS sensor or modulator valve fault",
        ),
        recommendations=(
            "Inspect air lines, gladhands, and brake chambers for leaks",
            "Check slack adjuster stroke and brake lining thickness",
            "Read ABS fault codes with a diagnostic scanner",
        ),
        tools=("Air pressure gauge", "Brake stroke gauge", "ABS diagnostic scanner"),
        warnings=(
            "Do not operate the truck with suspected brake failure",
            "Chock the wheels before working near the brakes",
        ),
        cost_range=(300, 2500),
        safety_critical=True,
    ),
    SymptomCategory(
        name="engine",
        label="engine and cooling",
        keywords=(
            "engine", "overheat", "coolant", "radiator", "thermostat", "temperature",
            "oil", "boil", "knock", "misfire", "stall", "power", "turbo", "water pump",
        ),
        causes=(
            "Cooling system fault: low coolant, leaking hose, failed water pump, or stuck thermostat",
            "Restricted radiator or failed fan clutch reducing heat rejection",
            "Internal engine issue such as a head gasket or EGR cooler leak",
        ),
        recommendations=(
            "Let the engine cool, then check coolant level and look for leaks at hoses, radiator, and water pump",
            "Pressure-test the cooling system and inspect the thermostat and fan clutch",
            "Check engine oil level and condition for signs of coolant contamination",
        ),
        tools=("Cooling system pressure tester", "Infrared thermometer", "Diagnostic scanner"),
        warnings=(
            "Never open a hot radiator or coolant reservoir cap",
            "Continued operation while overheating can cause severe engine damage",
        ),
        cost_range=(200, 4000),
    ),
    SymptomCategory(
        name="transmission",
        label="transmission and drivetrain",
        keywords=("transmission", "shift", "gear", "clutch", "drivetrain", "driveline"),
        causes=(
            "Low or contaminated transmission fluid",
            "Worn clutch or clutch adjustment out of specification",
            "Transmission control module or shift actuator fault",
        ),
        recommendations=(
            "Check transmission fluid level and condition",
            "Inspect clutch free play and linkage adjustment",
            "Scan the transmission controller for fault codes",
        ),
        tools=("Diagnostic scanner", "Fluid sampling kit"),
        warnings=("Avoid forcing gear changes that grind or resist",),
        cost_range=(250, 5000),
    ),
    SymptomCategory(
        name="electrical",
        label="electrical",
        keywords=(
            "electrical", "battery", "batteries", "alternator", "starter", "wiring", "fuse",
            "light", "won't start", "wont start", "no start", "hard starting", "dashboard",
        ),
        causes=(
            "Weak batteries or corroded battery terminals",
            "Failing alternator or loose charging system wiring",
            "Blown fuse, failed relay, or chafed harness",
        ),
        recommendations=(
            "Test battery voltage and clean the terminals",
            "Check alternator output with the engine running",
            "Inspect fuses, relays, and harnesses for damage",
        ),
        tools=("Multimeter", "Battery load tester"),
        warnings=("Disconnect the batteries before working on wiring",),
        cost_range=(100, 1500),
    ),
    SymptomCategory(
        name="tire",
        label="tire and wheel",
        keywords=("tire", "tyre", "flat", "tread", "wheel", "blowout", "vibration", "wobble"),
        causes=(
            "Under-inflated or damaged tire",
            "Wheel imbalance, loose lug nuts, or worn wheel bearing",
        ),
        recommendations=(
            "Check tire pressures and inspect sidewalls and tread depth",
            "Verify lug nut torque and check wheel bearings for play",
        ),
        tools=("Tire pressure gauge", "Torque wrench", "Tread depth gauge"),
        warnings=("Never inflate a tire that has been run flat without inspecting it",),
        cost_range=(150, 1200),
        safety_critical=True,
    ),
    SymptomCategory(
        name="exhaust",
        label="exhaust and emissions",
        keywords=("smoke", "smoking", "exhaust", "dpf", "def", "egr", "regen", "regeneration", "emission"),
        causes=(
            "Clogged diesel particulate filter or failed regeneration",
            "DEF quality or dosing fault in the SCR system",
            "Stuck EGR valve",
        ),
        recommendations=(
            "Check aftertreatment fault codes and DPF soot load",
            "Verify DEF level and quality",
        ),
        tools=("Diagnostic scanner", "DEF refractometer"),
        warnings=("Exhaust components stay hot long after shutdown",),
        cost_range=(300, 6000),
    ),
    SymptomCategory(
        name="fuel",
        label="fuel system",
        keywords=("fuel", "injector", "mpg", "consumption", "diesel"),
        causes=(
            "Clogged fuel filter or water in fuel",
            "Worn or leaking injectors",
        ),
        recommendations=(
            "Replace fuel filters and drain the water separator",
            "Perform an injector balance test",
        ),
        tools=("Fuel pressure gauge", "Diagnostic scanner"),
        warnings=("Keep ignition sources away from fuel leaks",),
        cost_range=(100, 3000),
    ),
)

# Keywords that push urgency all the way to HIGH.
CRITICAL_KEYWORDS: tuple[str, ...] = (
    "fire", "flame", "no brakes", "brake failure", "brakes failed",
    "blowout", "loss of steering", "steering failure",
)

# Non-brake keywords that still mark the request as a safety issue.
SAFETY_KEYWORDS: tuple[str, ...] = ("steering", "burning", "fire", "smoke")

CRITICAL_PATTERN = keyword_pattern(CRITICAL_KEYWORDS)
SAFETY_PATTERN = keyword_pattern(SAFETY_KEYWORDS)

GENERIC_CAUSE = "Symptoms could not be matched to a known category without a hands-on inspection"
GENERIC_COST = (150, 1500)


class OfflineDiagnosisSynthesizer:
    """Produces rule-based diagnoses without any network access.

    Pure decision logic, no side effects.
    """

    def __init__(self, confidence: float = OFFLINE_CONFIDENCE):
        self.confidence = confidence

    def synthesize(self, request: DiagnosisRequest) -> DiagnosisResult:
        """Build a conservative diagnosis from symptom keywords.

        Rules:
        - Each matched category contributes its causes, recommendations,
          tools, and warnings, in the fixed category order.
        - Brake or other safety keywords raise urgency to at least MEDIUM
          and put the safety recommendation ahead of category advice.
        - Critical keywords raise urgency to HIGH.
        - A HIGH urgency result always leads with an immediate-action item.
        - A consult-a-technician recommendation is always appended.
        """
        text = self._symptom_text(request)
        matched = self.classify(text)

        safety = any(c.safety_critical for c in matched) or SAFETY_PATTERN.search(text) is not None
        critical = CRITICAL_PATTERN.search(text) is not None

        urgency = request.urgency
        if safety:
            urgency = Urgency.highest(urgency, Urgency.MEDIUM)
        if critical:
            urgency = Urgency.HIGH

        recommendations: list[str] = []
        if urgency == Urgency.HIGH:
            recommendations.append(IMMEDIATE_ACTION)
        if safety:
            recommendations.append(SAFETY_FIRST)
        for category in matched:
            recommendations.extend(category.recommendations)
        recommendations.append(CONSULT_TECHNICIAN)

        causes = [cause for c in matched for cause in c.causes] or [GENERIC_CAUSE]

        if matched:
            low = min(c.cost_range[0] for c in matched)
            high = max(c.cost_range[1] for c in matched)
            labels = ", ".join(c.label for c in matched)
        else:
            low, high = GENERIC_COST
            labels = "unclassified"

        return DiagnosisResult(
            diagnosis=(
                f"Offline assessment for {request.truck.describe()}: the reported "
                f"symptoms point to {labels} issues. AI diagnosis services were "
                f"unavailable, so this is a rule-based estimate."
            ),
            possible_causes=_unique(causes),
            recommendations=_unique(recommendations),
            confidence=self.confidence,
            estimated_cost=f"${low:,}-${high:,} (offline estimate)",
            urgency=urgency,
            provider=OFFLINE_PROVIDER,
            estimated_time="Varies; requires professional inspection",
            required_tools=_unique(t for c in matched for t in c.tools) or ("Diagnostic scanner",),
            safety_warnings=_unique(
                [w for c in matched for w in c.warnings]
                + ["Always follow proper safety procedures"]
            ),
        )

    @staticmethod
    def classify(text: str) -> tuple[SymptomCategory, ...]:
        """Return the categories whose keywords appear in text, in rule order."""
        lowered = text.lower()
        return tuple(c for c in CATEGORIES if c.matches(lowered))

    @staticmethod
    def _symptom_text(request: DiagnosisRequest) -> str:
        parts = list(request.symptoms)
        if request.additional_info:
            parts.append(request.additional_info)
        return " | ".join(parts).lower()


def _unique(items: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))
