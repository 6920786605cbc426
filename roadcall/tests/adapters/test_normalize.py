"""Tests for shared prompt building and response normalization."""

import json

import pytest

from roadcall.adapters.providers.normalize import (
    CHAT_SYSTEM_PROMPT,
    DEFAULT_CONFIDENCE,
    SYSTEM_PROMPT,
    DegradedTemplate,
    build_chat_messages,
    build_diagnosis_messages,
    build_diagnosis_prompt,
    build_quick_tip_messages,
    completion_text,
    extract_json,
    normalize_confidence,
    parse_diagnosis,
    parse_quick_tip,
)
from roadcall.core.errors import ParseError
from roadcall.core.models import ChatMessage, DiagnosisRequest, TruckModel, Urgency

TEMPLATE = DegradedTemplate(confidence=0.55, estimated_cost="$100-200")


@pytest.fixture
def request_() -> DiagnosisRequest:
    return DiagnosisRequest(
        truck=TruckModel(
            make="Volvo", model="VNL 860", year=2021, engine="Volvo D13", mileage=412000
        ),
        symptoms=("Check engine light", "Loss of power on grades"),
        additional_info="DPF regen ran yesterday",
        urgency=Urgency.MEDIUM,
    )


class TestPrompts:
    def test_diagnosis_prompt_includes_truck_and_symptoms(self, request_) -> None:
        prompt = build_diagnosis_prompt(request_)

        assert "Make: Volvo" in prompt
        assert "Mileage: 412000" in prompt
        assert "1. Check engine light" in prompt
        assert "2. Loss of power on grades" in prompt
        assert "ADDITIONAL INFORMATION:\nDPF regen ran yesterday" in prompt
        assert "URGENCY LEVEL: medium" in prompt

    def test_prompt_handles_missing_year(self) -> None:
        request = DiagnosisRequest(
            truck=TruckModel(make="Mack", model="Anthem", year=None, engine=""),
            symptoms=("Grinding noise",),
        )
        prompt = build_diagnosis_prompt(request)
        assert "Year: Unknown" in prompt
        assert "Engine: Not specified" in prompt
        assert "ADDITIONAL INFORMATION" not in prompt

    def test_diagnosis_messages_lead_with_system_prompt(self, request_) -> None:
        messages = build_diagnosis_messages(request_)
        assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert messages[1]["role"] == "user"

    def test_chat_messages_get_persona(self) -> None:
        payload = build_chat_messages([ChatMessage(role="user", content="Hi")])
        assert payload[0] == {"role": "system", "content": CHAT_SYSTEM_PROMPT}
        assert payload[1] == {"role": "user", "content": "Hi"}

    def test_chat_messages_keep_caller_system_prompt(self) -> None:
        messages = [
            ChatMessage(role="system", content="Be brief."),
            ChatMessage(role="user", content="Hi"),
        ]
        payload = build_chat_messages(messages)
        assert len(payload) == 2
        assert payload[0]["content"] == "Be brief."


class TestExtractJson:
    def test_plain_json(self) -> None:
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_block(self) -> None:
        text = 'Here you go:\n```json\n{"a": 2}\n```\nGood luck.'
        assert extract_json(text) == {"a": 2}

    def test_embedded_braces(self) -> None:
        assert extract_json('Result: {"a": {"b": 3}} end') == {"a": {"b": 3}}

    def test_non_object_json(self) -> None:
        assert extract_json("[1, 2, 3]") is None

    def test_prose(self) -> None:
        assert extract_json("Replace the thermostat.") is None


class TestNormalizeConfidence:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (0.85, 0.85),
            (8, 0.8),
            (85, 0.85),
            ("90%", 0.9),
            ("0.4", 0.4),
            (150, 1.0),
            (-3, 0.0),
        ],
    )
    def test_scales(self, raw, expected) -> None:
        assert normalize_confidence(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", [None, True, "high", float("nan"), [0.5]])
    def test_defaults(self, raw) -> None:
        assert normalize_confidence(raw) == DEFAULT_CONFIDENCE


def test_completion_text() -> None:
    payload = {"choices": [{"message": {"role": "assistant", "content": "ok"}}]}
    assert completion_text(payload) == "ok"
    assert completion_text({"choices": []}) is None
    assert completion_text("not a dict") is None


class TestParseDiagnosis:
    def test_camel_case_response(self, request_) -> None:
        text = json.dumps(
            {
                "diagnosis": "Clogged DPF",
                "possibleCauses": ["Incomplete regeneration"],
                "recommendations": ["Force a parked regen", "Check DPF pressure sensor"],
                "confidence": 0.8,
                "estimatedCost": "$500-1500",
                "estimatedTime": "2-4 hours",
                "requiredTools": ["Scan tool"],
                "safetyWarnings": ["Exhaust is hot"],
                "urgencyLevel": "HIGH",
            }
        )
        result = parse_diagnosis(text, request_, "azure-openai", TEMPLATE)

        assert result.diagnosis == "Clogged DPF"
        assert result.possible_causes == ("Incomplete regeneration",)
        assert len(result.recommendations) == 2
        assert result.confidence == 0.8
        assert result.urgency == Urgency.HIGH
        assert result.provider == "azure-openai"
        assert result.required_tools == ("Scan tool",)

    def test_snake_case_and_ten_point_confidence(self, request_) -> None:
        text = json.dumps(
            {
                "summary": "Turbo boost leak",
                "causes": "Cracked charge air cooler",
                "repair_steps": ["Pressure test the CAC"],
                "confidence": 7,
                "urgency": "unknown",
            }
        )
        result = parse_diagnosis(text, request_, "github-models", TEMPLATE)

        assert result.diagnosis == "Turbo boost leak"
        assert result.possible_causes == ("Cracked charge air cooler",)
        assert result.confidence == pytest.approx(0.7)
        assert result.urgency == Urgency.MEDIUM
        assert result.estimated_cost == "Estimate not available"

    def test_prose_degrades_to_template(self, request_) -> None:
        result = parse_diagnosis(
            "  Likely a failing EGR valve.  ", request_, "azure-ai-foundry", TEMPLATE
        )

        assert result.diagnosis == "Likely a failing EGR valve."
        assert result.possible_causes == ("Likely a failing EGR valve.",)
        assert result.recommendations == (TEMPLATE.recommendation,)
        assert result.confidence == 0.55
        assert result.estimated_cost == "$100-200"
        assert result.urgency == request_.urgency

    def test_json_missing_recommendations_degrades(self, request_) -> None:
        text = '{"diagnosis": "Bad injector"}'
        result = parse_diagnosis(text, request_, "github-models", TEMPLATE)
        assert result.recommendations == (TEMPLATE.recommendation,)
        assert result.confidence == TEMPLATE.confidence

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_raises_parse_error(self, request_, text) -> None:
        with pytest.raises(ParseError):
            parse_diagnosis(text, request_, "github-models", TEMPLATE)


class TestParseQuickTip:
    def test_json_tip(self) -> None:
        text = json.dumps({"tip": "Check tire pressure before the next leg", "severity": "High"})
        tip = parse_quick_tip(text, "azure-openai")
        assert tip.tip == "Check tire pressure before the next leg"
        assert tip.severity == "high"
        assert tip.provider == "azure-openai"

    def test_fenced_json_tip(self) -> None:
        text = '```json\n{"tip": "Drain the air tanks", "severity": "low"}\n```'
        assert parse_quick_tip(text, "github-models").tip == "Drain the air tanks"

    def test_prose_becomes_medium_tip(self) -> None:
        tip = parse_quick_tip("  Have the coolant level checked.  ", "azure-ai-foundry")
        assert tip.tip == "Have the coolant level checked."
        assert tip.severity == "medium"

    def test_unknown_severity_reads_as_medium(self) -> None:
        text = json.dumps({"tip": "Inspect the wheel seals", "severity": "urgent"})
        assert parse_quick_tip(text, "azure-openai").severity == "medium"

    def test_json_without_tip_raises(self) -> None:
        with pytest.raises(ParseError, match="no tip"):
            parse_quick_tip('{"severity": "high"}', "azure-openai")

    @pytest.mark.parametrize("text", [None, "", "  \n "])
    def test_empty_raises_parse_error(self, text) -> None:
        with pytest.raises(ParseError):
            parse_quick_tip(text, "azure-openai")


def test_quick_tip_messages_carry_symptom() -> None:
    messages = build_quick_tip_messages("Air pressure warning buzzer")
    assert len(messages) == 1
    assert messages[0]["role"] == "user"
    assert '"Air pressure warning buzzer"' in messages[0]["content"]
