"""
具体诊断实现。

新增诊断来源：在此文件添加一个类，然后在 factory.py 注册即可。

已注册来源：
  agent      — AgentDiagnosisService   (外部诊断 agent，HTTP)
  anthropic  — ClaudeDiagnosisService  (claude-sonnet-4-20250514)
  openai     — OpenAIDiagnosisService  (gpt-4o)
  local      — LocalDiagnosisService   (本地规则，也是其他来源失败时的降级)
"""

import json
import logging
import os

import requests
from django.conf import settings

from ..intake.types import SymptomIntake
from .base import BaseDiagnosisService, triage
from .types import DiagnosisResult

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are a clinical triage assistant. Given a patient's reported symptoms, "
    "produce a preliminary assessment for a doctor to review. "
    "Respond with a single JSON object with keys: "
    '"diagnosis" (string), "confidence" (number 0-1), '
    '"investigations" (list of {"name", "priority", "reason"}), '
    '"treatments" (list of {"name", "reason"}), "advice" (list of strings). '
    "Do not include any text outside the JSON object."
)


def build_prompt(intake: SymptomIntake) -> str:
    history = intake.medical_history.flatten()
    return f"""Patient symptoms: {', '.join(intake.all_symptoms)}
Patient age: {intake.patient_age if intake.patient_age is not None else 'Not provided'}
Self-reported severity: {intake.severity_level}
Duration: {intake.duration}
Triggers: {', '.join(intake.triggers) or 'None'}
Previous treatments: {', '.join(intake.previous_treatments) or 'None'}
Medical history: {', '.join(history) or 'None'}
Notes: {intake.additional_notes or 'None'}"""


def _parse_llm_json(content: str) -> dict:
    # 模型偶尔会包一层 ```json ... ```
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        text = text[text.find("{"):]
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end < start:
        raise ValueError("LLM response does not contain a JSON object")
    return json.loads(text[start:end + 1])


def _result_from_payload(intake: SymptomIntake, payload: dict, provider: str) -> DiagnosisResult:
    diagnosis = str(payload.get("diagnosis") or "").strip()
    if not diagnosis:
        raise ValueError(f"{provider} returned an empty diagnosis")

    severity, recommended_type = triage(intake)
    return DiagnosisResult(
        diagnosis=diagnosis,
        severity=severity,
        recommended_type=recommended_type,
        confidence=float(payload.get("confidence", 0.0) or 0.0),
        investigations=list(payload.get("investigations") or []),
        treatments=list(payload.get("treatments") or []),
        advice=list(payload.get("advice") or []),
        provider=provider,
        raw=payload,
    )


# ── AgentDiagnosisService ──────────────────────────────────────────────────
#
# 外部诊断 agent：POST {AI_DIAGNOSIS_URL}/api/v1/diagnosis/
# 环境变量：AI_DIAGNOSIS_URL / AI_DIAGNOSIS_TOKEN / AI_DIAGNOSIS_TIMEOUT_SECONDS

class AgentDiagnosisService(BaseDiagnosisService):

    name = "agent"

    def diagnose(self, intake: SymptomIntake) -> DiagnosisResult:
        base_url = getattr(settings, "AI_DIAGNOSIS_URL", "")
        if not base_url:
            raise ValueError("AI_DIAGNOSIS_URL is not set")

        headers = {"Content-Type": "application/json"}
        token = getattr(settings, "AI_DIAGNOSIS_TOKEN", "")
        if token:
            headers["Authorization"] = f"Bearer {token}"

        payload = {
            "diagnosis_request": {
                "symptoms": intake.all_symptoms,
                "patient_age": intake.patient_age,
                "medical_history": intake.medical_history.flatten(),
                "severity_level": intake.severity_level,
                "duration": intake.duration,
                "additional_notes": intake.additional_notes,
            }
        }

        response = requests.post(
            f"{base_url.rstrip('/')}/api/v1/diagnosis/",
            json=payload,
            headers=headers,
            timeout=getattr(settings, "AI_DIAGNOSIS_TIMEOUT_SECONDS", 30),
        )
        response.raise_for_status()
        data = response.json()

        return _result_from_payload(intake, {
            "diagnosis": data.get("diagnosis"),
            "confidence": data.get("confidence_score"),
            "investigations": data.get("suggested_investigations"),
            "treatments": data.get("recommended_medications"),
            "advice": data.get("lifestyle_advice"),
        }, self.name)


# ── ClaudeDiagnosisService ─────────────────────────────────────────────────
#
# 使用 Anthropic SDK。
# 环境变量：ANTHROPIC_API_KEY
# 模型：claude-sonnet-4-20250514（可通过 ANTHROPIC_MODEL 覆盖）

class ClaudeDiagnosisService(BaseDiagnosisService):

    name = "anthropic"
    DEFAULT_MODEL = "claude-sonnet-4-20250514"

    def diagnose(self, intake: SymptomIntake) -> DiagnosisResult:
        import anthropic

        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY is not set")

        model = os.getenv("ANTHROPIC_MODEL", self.DEFAULT_MODEL)
        client = anthropic.Anthropic(
            api_key=api_key,
            timeout=getattr(settings, "AI_DIAGNOSIS_TIMEOUT_SECONDS", 30),
        )

        response = client.messages.create(
            model=model,
            max_tokens=1500,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": build_prompt(intake)}],
        )

        return _result_from_payload(intake, _parse_llm_json(response.content[0].text), self.name)


# ── OpenAIDiagnosisService ─────────────────────────────────────────────────
#
# 使用 OpenAI SDK。
# 环境变量：OPENAI_API_KEY
# 模型：gpt-4o（可通过 OPENAI_MODEL 覆盖）

class OpenAIDiagnosisService(BaseDiagnosisService):

    name = "openai"
    DEFAULT_MODEL = "gpt-4o"

    def diagnose(self, intake: SymptomIntake) -> DiagnosisResult:
        import openai

        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY is not set")

        model = os.getenv("OPENAI_MODEL", self.DEFAULT_MODEL)
        client = openai.OpenAI(
            api_key=api_key,
            timeout=getattr(settings, "AI_DIAGNOSIS_TIMEOUT_SECONDS", 30),
        )

        response = client.chat.completions.create(
            model=model,
            max_tokens=1500,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user",   "content": build_prompt(intake)},
            ],
        )

        return _result_from_payload(intake, _parse_llm_json(response.choices[0].message.content), self.name)


# ── LocalDiagnosisService ──────────────────────────────────────────────────
#
# 不调用任何外部服务，只做分诊。

class LocalDiagnosisService(BaseDiagnosisService):

    name = "local"
    FALLBACK_DIAGNOSIS = "Preliminary assessment requires medical consultation"

    def diagnose(self, intake: SymptomIntake) -> DiagnosisResult:
        severity, recommended_type = triage(intake)
        return DiagnosisResult(
            diagnosis=self.FALLBACK_DIAGNOSIS,
            severity=severity,
            recommended_type=recommended_type,
            confidence=0.5,
            provider=self.name,
            is_fallback=True,
        )
