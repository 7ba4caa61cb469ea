"""Prompted calls to the completion API for prior-authorization coding.

Three fixed prompts: pull patient fields out of a visit note, suggest CPT
codes from retrieved guidelines, and validate an edited ICD/CPT pairing.
Every reply goes through brace extraction and a JSON Schema check.
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

from jsonschema import ValidationError, validate

from authdesk.completion_client import CompletionClient, InvalidJSONError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"

EXTRACTION_PROMPT = """
Act as an expert in Optical Character Recognition.
I am providing a doctor visit note pdf, extract out the information carefully double check your work and format it as a JSON object like below example.
{{
"patient_name": "John Cena",
"patient_dob": "04/28/1997",
"medical_plan": "Order MRI of the Right Knee Without Contrast",
"diagnostic_impressions": "Osteoarthritis of right knee (M17.11)",
"icd_codes": ["M17.11"]
}}
Only return the JSON object as response and nothing else

Here is the text content: {pdf_text}
""".strip()

CPT_PROMPT = """
Act as an expert medical coder specializing in procedure CPT codes.
Review the medical plan from the doctor provided, then for each procedure requested by the doctor review the provided medical guide lines and give the code that most closely matches each requested procedure.
Note if doctor is requesting single type of scan for multiple body parts, then you should return the code for the scan that covers all the body parts.
Double check your work and format it as a JSON object like below example.
{{
"cptCode": ["99213"],
"description": "Office or other outpatient visit for evaluation and management",
"cptCodesExplanation": "The code 99213 is the most appropriate code for the requested procedure because it is a comprehensive evaluation and management code that includes a detailed history and physical examination."
}}

Here is the medical guide lines: {guidelines}
Here is the medical plan from doctor: {medical_plan}

Please make sure to ONLY return the JSON as response and nothing else.
""".strip()

VALIDATION_SYSTEM_PROMPT = "You are a medical coding expert specializing in ICD and CPT code validation."

VALIDATION_PROMPT = """
As a medical coding expert, validate if the provided CPT codes are appropriate for the given ICD codes and medical guidelines.

ICD Codes: {icd_codes}
CPT Codes: {cpt_codes}
Current CPT Codes Explanation: {explanation}
Medical Guidelines: {guidelines}

Please analyze if the CPT codes are appropriate for the diagnosis (ICD codes) according to the medical guidelines.
If they are appropriate, explain why. If they are not appropriate, explain what codes would be more suitable.

Respond in the following JSON format:
{{
  "isValid": boolean,
  "explanation": "detailed explanation of the validation result",
  "suggestedChanges": "if not valid, suggest alternative codes or changes",
  "confidence": "high/medium/low"
}}
Only return the JSON object as response and nothing else
""".strip()

_CODE_SPLIT_RE = re.compile(r"[,;\s]+")


class ExtractionError(RuntimeError):
    pass


@lru_cache(maxsize=None)
def _load_schema(name: str) -> dict[str, Any]:
    return json.loads((SCHEMA_DIR / name).read_text(encoding="utf-8"))


def _as_code_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [code for code in _CODE_SPLIT_RE.split(value) if code]
    if isinstance(value, (list, tuple)):
        return [str(code).strip() for code in value if str(code).strip()]
    return [str(value)]


def _check(instance: dict[str, Any], schema_name: str) -> None:
    try:
        validate(instance=instance, schema=_load_schema(schema_name))
    except ValidationError as exc:
        raise InvalidJSONError(f"Model response failed schema validation: {exc.message}") from exc


def extract_fields(client: CompletionClient, pdf_text: str, model: str | None = None) -> dict[str, Any]:
    """Ask the model for patient name, DOB, plan, impressions and ICD codes."""
    fields = client.complete_json(
        model or client.settings.extract_model,
        EXTRACTION_PROMPT.format(pdf_text=pdf_text),
    )
    if "icd_codes" in fields:
        fields["icd_codes"] = _as_code_list(fields["icd_codes"])
    return fields


def check_extracted_fields(fields: dict[str, Any]) -> None:
    """Patient name and date of birth are mandatory for a new authorization."""
    try:
        validate(instance=fields, schema=_load_schema("extracted_fields.schema.json"))
    except ValidationError as exc:
        raise ExtractionError(f"Extracted fields incomplete: {exc.message}") from exc


def suggest_cpt_codes(
    client: CompletionClient,
    guidelines: Sequence[str],
    medical_plan: str,
    model: str | None = None,
) -> dict[str, Any]:
    suggestion = client.complete_json(
        model or client.settings.coding_model,
        CPT_PROMPT.format(guidelines="\n".join(guidelines), medical_plan=medical_plan),
    )
    if "cptCode" in suggestion:
        suggestion["cptCode"] = _as_code_list(suggestion["cptCode"])
    _check(suggestion, "cpt_suggestion.schema.json")
    return suggestion


def validate_codes(
    client: CompletionClient,
    icd_codes: Sequence[str],
    cpt_codes: Sequence[str],
    explanation: str,
    guidelines: Sequence[str],
    model: str | None = None,
) -> dict[str, Any]:
    verdict = client.complete_json(
        model or client.settings.coding_model,
        VALIDATION_PROMPT.format(
            icd_codes=", ".join(icd_codes),
            cpt_codes=", ".join(cpt_codes),
            explanation=explanation,
            guidelines="\n".join(guidelines),
        ),
        system_prompt=VALIDATION_SYSTEM_PROMPT,
        json_mode=True,
    )
    if isinstance(verdict.get("confidence"), str):
        verdict["confidence"] = verdict["confidence"].strip().lower()
    _check(verdict, "code_verdict.schema.json")
    logger.info("Validated CPT %s against ICD %s: valid=%s", list(cpt_codes), list(icd_codes), verdict["isValid"])
    return verdict
