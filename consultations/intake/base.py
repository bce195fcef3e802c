"""
BaseIntakeAdapter — 所有症状输入格式 Adapter 的抽象基类。

每个新格式只需：
1. 继承 BaseIntakeAdapter
2. 实现 parse() 和 transform()
3. 在 factory.py 的 _build_registry() 注册一行

workflow 无需任何改动。
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ValidationError
from .types import SymptomIntake

SEVERITY_LEVELS = ("mild", "moderate", "severe")
MIN_PATIENT_AGE = 12
MAX_PATIENT_AGE = 100


class BaseIntakeAdapter(ABC):
    """
    三步流水线：parse → transform → validate

    子类必须实现 transform()；parse() 默认按 JSON 解析（已经是 dict 的直接用）。
    validate() 提供通用校验，子类可 super() 后追加检查。
    """

    source: str = ""

    def __init__(self, raw_body: bytes | str | dict):
        self._raw_body = raw_body

    def parse(self) -> Any:
        raw = self._raw_body
        if isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw)
            except ValueError as exc:
                raise ValidationError(message="Request body is not valid JSON.", code="MALFORMED_BODY") from exc
        if not isinstance(raw, dict):
            raise ValidationError(message="Request body must be a JSON object.", code="MALFORMED_BODY")
        self._parsed = raw
        return raw

    @abstractmethod
    def transform(self) -> SymptomIntake:
        """将 self._parsed 转换为 SymptomIntake，原始数据存入 raw_payload。"""

    def validate(self, intake: SymptomIntake) -> None:
        errors = []

        if not intake.symptoms:
            errors.append({"field": "symptoms", "message": "At least one symptom is required."})

        if intake.severity_level not in SEVERITY_LEVELS:
            errors.append({
                "field": "severity",
                "message": f"Severity must be one of {list(SEVERITY_LEVELS)}.",
            })

        if not intake.duration:
            errors.append({"field": "duration", "message": "Duration is required."})

        if intake.patient_age is not None and not MIN_PATIENT_AGE <= intake.patient_age <= MAX_PATIENT_AGE:
            errors.append({
                "field": "patient_age",
                "message": f"Patient age must be between {MIN_PATIENT_AGE} and {MAX_PATIENT_AGE}.",
            })

        if errors:
            raise ValidationError(
                message="Request validation failed.",
                code="VALIDATION_ERROR",
                detail={"errors": errors},
            )

    def process(self) -> SymptomIntake:
        """parse → transform → validate，返回校验通过的 SymptomIntake。"""
        self.parse()
        intake = self.transform()
        self.validate(intake)
        return intake


def as_str_list(value) -> list[str]:
    """客户端有时传单个字符串，有时传数组；统一成去空白的 list。"""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(message="Expected a list of strings.", code="VALIDATION_ERROR")
    return [str(v).strip() for v in value if str(v).strip()]


def as_age(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            message="Patient age must be a number.",
            code="VALIDATION_ERROR",
            detail={"errors": [{"field": "patient_age", "message": f"Invalid age: {value!r}."}]},
        ) from exc
