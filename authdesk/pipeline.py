from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from authdesk import firestore_client as fdb
from authdesk.coding import check_extracted_fields, extract_fields, suggest_cpt_codes, validate_codes
from authdesk.completion_client import CompletionClient
from authdesk.models import AuthStatus, PriorAuthorization
from authdesk.pdf_text import extract_pdf_text
from authdesk.retrieval_client import RetrievalClient

logger = logging.getLogger(__name__)


def guideline_query(fields: dict[str, Any]) -> str:
    icd_codes = fields.get("icd_codes") or []
    if icd_codes:
        return " ".join(icd_codes)
    return str(fields.get("medical_plan") or "")


def draft_authorization(
    pdf_text: str,
    completion: CompletionClient,
    retrieval: RetrievalClient,
    employee_id: str | None = None,
    medical_plan_name: str = "",
) -> PriorAuthorization:
    """Run extraction, retrieval and CPT suggestion; nothing is stored."""
    fields = extract_fields(completion, pdf_text)
    check_extracted_fields(fields)
    logger.info("Extracted fields for %s", fields["patient_name"])

    medical_plan = str(fields.get("medical_plan") or "")
    guidelines = retrieval.retrieve(guideline_query(fields))
    logger.info("Retrieved %d guideline chunks", len(guidelines))

    suggestion = suggest_cpt_codes(completion, guidelines, medical_plan)
    logger.info("Suggested CPT codes %s", suggestion["cptCode"])

    return PriorAuthorization(
        employee_id=employee_id,
        patient_name=fields["patient_name"],
        patient_date_of_birth=fields["patient_dob"],
        status=AuthStatus.PENDING,
        icd_codes=fields.get("icd_codes") or [],
        cpt_codes=suggestion["cptCode"],
        cpt_codes_explanation=suggestion.get("cptCodesExplanation") or "",
        medical_plan=medical_plan,
        medical_plan_name=medical_plan_name,
    )


def create_authorization_from_pdf(
    pdf_bytes: bytes,
    completion: CompletionClient,
    retrieval: RetrievalClient,
    employee_id: str | None = None,
    medical_plan_name: str = "",
    save: Callable[[PriorAuthorization], PriorAuthorization] = fdb.create_prior_authorization,
) -> PriorAuthorization:
    pdf_text = extract_pdf_text(pdf_bytes)
    draft = draft_authorization(
        pdf_text,
        completion,
        retrieval,
        employee_id=employee_id,
        medical_plan_name=medical_plan_name,
    )
    created = save(draft)
    logger.info("Created prior authorization %s from PDF", created.id)
    return created


def validate_edited_codes(
    completion: CompletionClient,
    retrieval: RetrievalClient,
    icd_codes: Sequence[str],
    cpt_codes: Sequence[str],
    explanation: str,
) -> dict[str, Any]:
    # Guidelines are re-queried by ICD codes, independent of the suggestion query.
    guidelines = retrieval.retrieve(" ".join(icd_codes))
    return validate_codes(completion, icd_codes, cpt_codes, explanation, guidelines)
