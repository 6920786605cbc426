"""Shared prompt building and response normalization for provider adapters.

Every backend receives the same diagnosis prompt and answers in slightly
different JSON dialects (camelCase or snake_case, 0-1 or 1-10 confidence,
"recommendations" or "repairSteps"). This module turns any of them into a
DiagnosisResult, or degrades to a templated answer when the text cannot be
parsed.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from roadcall.core.errors import ParseError
from roadcall.core.models import (
    TIP_SEVERITIES,
    ChatMessage,
    DiagnosisRequest,
    DiagnosisResult,
    QuickTip,
    Urgency,
    clamp_confidence,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.7

SYSTEM_PROMPT = """You are an expert truck mechanic with over 20 years of experience specializing in commercial vehicle diagnostics and repair. You have extensive knowledge of:

- Heavy-duty diesel engines (Caterpillar, Cummins, Detroit Diesel, PACCAR, Volvo, Mack)
- Emissions systems (DPF, SCR, EGR, DEF)
- Transmission systems (manual, automatic, AMT)
- Air brake systems and pneumatics
- Electrical and electronic systems
- Preventive maintenance schedules

Provide accurate, practical repair guidance with safety considerations. Always include cost estimates and time requirements.

Respond ONLY with valid JSON in exactly this format:
{
  "diagnosis": "detailed diagnosis",
  "possibleCauses": ["cause 1", "cause 2"],
  "recommendations": ["step 1", "step 2", "step 3"],
  "confidence": 0.0-1.0,
  "estimatedCost": "cost range",
  "estimatedTime": "time estimate",
  "requiredTools": ["tool 1", "tool 2"],
  "safetyWarnings": ["warning 1", "warning 2"],
  "urgencyLevel": "low|medium|high"
}"""

CHAT_SYSTEM_PROMPT = (
    "You are a professional truck repair assistant with expertise in heavy-duty "
    "vehicle maintenance and diagnostics. Provide helpful, accurate, and "
    "safety-focused advice. Always recommend professional inspection for "
    "critical issues. Keep responses concise and use clear, practical language "
    "suitable for truck drivers."
)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)

# Accepted spellings for each result field, first match wins.
_ALIASES: dict[str, tuple[str, ...]] = {
    "diagnosis": ("diagnosis", "summary"),
    "possible_causes": ("possibleCauses", "possible_causes", "causes"),
    "recommendations": ("recommendations", "repairSteps", "repair_steps"),
    "confidence": ("confidence",),
    "estimated_cost": ("estimatedCost", "estimated_cost"),
    "estimated_time": ("estimatedTime", "estimated_time"),
    "required_tools": ("requiredTools", "required_tools"),
    "safety_warnings": ("safetyWarnings", "safety_warnings"),
    "urgency": ("urgencyLevel", "urgency_level", "urgency"),
}


@dataclass(frozen=True)
class DegradedTemplate:
    """Fixed values used when a provider's answer is not valid JSON."""

    confidence: float
    estimated_cost: str = "Estimate not available"
    estimated_time: str = "1-3 hours"
    recommendation: str = "Contact a qualified mechanic for detailed diagnosis"
    required_tools: tuple[str, ...] = ("Professional diagnostic tools",)
    safety_warnings: tuple[str, ...] = ("Always follow proper safety procedures",)


def build_diagnosis_prompt(request: DiagnosisRequest) -> str:
    """Render the user prompt shared by every provider."""
    truck = request.truck
    symptoms = "\n".join(f"{i}. {s}" for i, s in enumerate(request.symptoms, 1))

    prompt = f"""TRUCK INFORMATION:
Make: {truck.make}
Model: {truck.model}
Year: {truck.year if truck.year is not None else 'Unknown'}
Engine: {truck.engine or 'Not specified'}
Mileage: {truck.mileage if truck.mileage is not None else 'Not specified'}

REPORTED SYMPTOMS:
{symptoms}
"""
    if request.additional_info:
        prompt += f"\nADDITIONAL INFORMATION:\n{request.additional_info}\n"

    prompt += f"""
URGENCY LEVEL: {request.urgency.value}

Please provide a comprehensive diagnosis including:
1. Most likely causes of the issue
2. Step-by-step repair recommendations
3. Required tools and estimated repair time
4. Estimated cost range
5. Critical safety warnings
6. Urgency assessment"""
    return prompt


def build_diagnosis_messages(request: DiagnosisRequest) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_diagnosis_prompt(request)},
    ]


def build_chat_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Prepend the assistant persona unless the caller supplied a system message."""
    payload = [m.as_dict() for m in messages]
    if not any(m.role == "system" for m in messages):
        payload.insert(0, {"role": "system", "content": CHAT_SYSTEM_PROMPT})
    return payload


def build_quick_tip_prompt(symptom: str) -> str:
    return (
        f'Provide a brief, essential tip for this truck symptom: "{symptom}".\n'
        'Respond ONLY with JSON in this format: '
        '{"tip": "brief helpful tip", "severity": "low|medium|high|critical"}'
    )


def build_quick_tip_messages(symptom: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": build_quick_tip_prompt(symptom)}]


def parse_quick_tip(text: str | None, provider: str) -> QuickTip:
    """Turn raw model output into a QuickTip.

    Prose instead of JSON is kept as the tip text at medium severity. An
    unrecognized severity also reads as medium.

    Raises:
        ParseError: If there is no text at all, or the JSON has no tip.
    """
    if text is None or not text.strip():
        raise ParseError(provider, "response contained no content")

    data = extract_json(text)
    if data is None:
        logger.warning(f"{provider} quick tip was not JSON, using raw text")
        return QuickTip(tip=text.strip(), severity="medium", provider=provider)

    tip = _as_text(data.get("tip"))
    if not tip:
        raise ParseError(provider, "quick tip JSON had no tip")

    severity = _as_text(data.get("severity")).lower()
    if severity not in TIP_SEVERITIES:
        logger.debug(f"Ignoring unrecognized tip severity '{severity}'")
        severity = "medium"
    return QuickTip(tip=tip, severity=severity, provider=provider)


def completion_text(payload: Any) -> str | None:
    """Return the first choice's message content from a chat completion body."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else None


def extract_json(text: str) -> dict[str, Any] | None:
    """Find a JSON object in model output.

    Tries, in order: the whole text, a fenced ```json block, and the span
    from the first '{' to the last '}'. Returns None if none parse to an
    object.
    """
    candidates = [text.strip()]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def normalize_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    """Map a reported confidence onto 0.0-1.0.

    Values in 0-1 are kept, 1-10 are read as a ten-point scale, and 10-100
    as a percentage. Anything non-numeric gives the default.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.strip().rstrip("%")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    if number > 10:
        number /= 100
    elif number > 1:
        number /= 10
    return clamp_confidence(number)


def parse_diagnosis(
    text: str | None,
    request: DiagnosisRequest,
    provider: str,
    template: DegradedTemplate,
) -> DiagnosisResult:
    """Turn raw model output into a DiagnosisResult.

    Raises:
        ParseError: If there is no text at all. Non-JSON text or JSON
            missing required fields degrades to the template instead.
    """
    if text is None or not text.strip():
        raise ParseError(provider, "response contained no content")

    data = extract_json(text)
    if data is None:
        logger.warning(f"{provider} response was not JSON, using degraded format")
        return degrade(text, request, provider, template)

    fields = {name: _first(data, keys) for name, keys in _ALIASES.items()}
    causes = _as_strings(fields["possible_causes"])
    recommendations = _as_strings(fields["recommendations"])
    summary = _as_text(fields["diagnosis"])

    if not recommendations or not (causes or summary):
        logger.warning(f"{provider} response missing required fields, using degraded format")
        return degrade(text, request, provider, template)

    return DiagnosisResult(
        diagnosis=summary or causes[0],
        possible_causes=causes or (summary,),
        recommendations=recommendations,
        confidence=normalize_confidence(fields["confidence"]),
        estimated_cost=_as_text(fields["estimated_cost"]) or "Estimate not available",
        urgency=_parse_urgency(fields["urgency"], request.urgency),
        provider=provider,
        estimated_time=_as_text(fields["estimated_time"]) or "Unknown",
        required_tools=_as_strings(fields["required_tools"]),
        safety_warnings=_as_strings(fields["safety_warnings"]),
    )


def degrade(
    text: str,
    request: DiagnosisRequest,
    provider: str,
    template: DegradedTemplate,
) -> DiagnosisResult:
    """Wrap free text from a provider in a templated DiagnosisResult."""
    body = text.strip()
    return DiagnosisResult(
        diagnosis=body,
        possible_causes=(body,),
        recommendations=(template.recommendation,),
        confidence=template.confidence,
        estimated_cost=template.estimated_cost,
        urgency=request.urgency,
        provider=provider,
        estimated_time=template.estimated_time,
        required_tools=template.required_tools,
        safety_warnings=template.safety_warnings,
    )


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_strings(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        value = [value]
    return tuple(str(v).strip() for v in value if v is not None and str(v).strip())


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "; ".join(_as_strings(value))
    return str(value).strip()


def _parse_urgency(value: Any, default: Urgency) -> Urgency:
    if value is None:
        return default
    try:
        return Urgency.parse(str(value))
    except ValueError:
        logger.debug(f"Ignoring unrecognized urgency '{value}'")
        return default
