"""HTTP surface for orders and prior authorizations.

The module-level `app` is built from the environment and refuses to start
when OPENAI_API_KEY or RAGIE_AI_API_KEY is missing. Build one with
`create_app(settings, require_keys=False)` to serve without them; routes
that need a missing key then answer 500.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from authdesk import firestore_client as fdb
from authdesk.coding import ExtractionError, extract_fields, suggest_cpt_codes, validate_codes
from authdesk.completion_client import CompletionClient, CompletionError, InvalidJSONError
from authdesk.config import ConfigError, Settings
from authdesk.models import Order, PriorAuthorization, filter_by_status
from authdesk.pdf_text import PdfTextError, extract_pdf_text, is_pdf_type
from authdesk.pipeline import create_authorization_from_pdf, validate_edited_codes
from authdesk.retrieval_client import RetrievalClient, RetrievalError
from authdesk.workspace import OverrideRequiredError, require_saveable

logger = logging.getLogger(__name__)

router = APIRouter()


# ═══════════════════════════════════════════════════════════════════════════
# Dependencies
# ═══════════════════════════════════════════════════════════════════════════

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_completion_client(settings: Settings = Depends(get_settings)) -> CompletionClient:
    return CompletionClient(settings)


def get_retrieval_client(settings: Settings = Depends(get_settings)) -> RetrievalClient:
    return RetrievalClient(settings)


def _dump(record: Order | PriorAuthorization) -> dict[str, Any]:
    return record.model_dump(by_alias=True, mode="json")


async def _read_pdf_upload(file: UploadFile | None) -> bytes:
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")
    if not is_pdf_type(file.content_type):
        raise HTTPException(status_code=400, detail="File must be a PDF")
    return await file.read()


# ═══════════════════════════════════════════════════════════════════════════
# API: Health & documents
# ═══════════════════════════════════════════════════════════════════════════

@router.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict:
    return {
        "status": "ok",
        "config": {
            "completion_api_key_configured": bool(settings.openai_api_key),
            "retrieval_api_key_configured": bool(settings.ragie_api_key),
            "firebase_configured": bool(settings.firebase_project_id or settings.firebase_credentials_path),
        },
    }


@router.post("/api/pdf")
async def pdf_info(file: UploadFile | None = File(None)) -> dict:
    raw = await _read_pdf_upload(file)
    return {
        "message": "File received successfully",
        "filename": file.filename,
        "size": len(raw),
        "type": file.content_type,
    }


@router.post("/api/pdf-text")
async def pdf_text(file: UploadFile | None = File(None)) -> dict:
    raw = await _read_pdf_upload(file)
    try:
        text = extract_pdf_text(raw)
    except PdfTextError as exc:
        logger.exception("Error processing PDF %s", file.filename)
        raise HTTPException(status_code=500, detail="Error processing PDF file") from exc
    return {
        "message": "File processed successfully",
        "filename": file.filename,
        "size": len(raw),
        "type": file.content_type,
        "text": text,
    }


# ═══════════════════════════════════════════════════════════════════════════
# API: Completion & retrieval proxies
# ═══════════════════════════════════════════════════════════════════════════

class ExtractFieldsRequest(BaseModel):
    pdf_text: str | None = None


@router.post("/api/extract-fields")
def extract_fields_api(
    req: ExtractFieldsRequest,
    completion: CompletionClient = Depends(get_completion_client),
) -> dict:
    if not req.pdf_text:
        raise HTTPException(status_code=400, detail="PDF text is required")
    try:
        return extract_fields(completion, req.pdf_text)
    except InvalidJSONError as exc:
        raise HTTPException(status_code=500, detail="Invalid JSON response from completion API") from exc
    except CompletionError as exc:
        logger.warning("Field extraction failed: %s", exc)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


class GuidelinesRequest(BaseModel):
    query: Any = None


@router.post("/api/guidelines")
def guidelines_api(
    req: GuidelinesRequest,
    retrieval: RetrievalClient = Depends(get_retrieval_client),
) -> dict:
    if not isinstance(req.query, str):
        raise HTTPException(status_code=400, detail="Query must be a string")
    try:
        return retrieval.search(req.query)
    except RetrievalError as exc:
        logger.warning("Guideline retrieval failed: %s", exc)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


class CptCodesRequest(BaseModel):
    medical_guidelines: list[str] | str | None = None
    medical_plan: str = ""


@router.post("/api/cpt-codes")
def cpt_codes_api(
    req: CptCodesRequest,
    completion: CompletionClient = Depends(get_completion_client),
) -> dict:
    if not req.medical_guidelines:
        raise HTTPException(status_code=400, detail="Medical Guide Lines is required")
    guidelines = [req.medical_guidelines] if isinstance(req.medical_guidelines, str) else req.medical_guidelines
    try:
        return suggest_cpt_codes(completion, guidelines, req.medical_plan)
    except InvalidJSONError as exc:
        raise HTTPException(status_code=500, detail="Invalid JSON response from completion API") from exc
    except CompletionError as exc:
        logger.warning("CPT suggestion failed: %s", exc)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


class ValidateCodesRequest(BaseModel):
    icd_codes: list[str] = Field(default_factory=list)
    cpt_codes: list[str] = Field(default_factory=list)
    cpt_codes_explanation: str = ""
    medical_guidelines: list[str] = Field(default_factory=list)


@router.post("/api/validate-codes")
def validate_codes_api(
    req: ValidateCodesRequest,
    completion: CompletionClient = Depends(get_completion_client),
) -> dict:
    try:
        return validate_codes(
            completion,
            req.icd_codes,
            req.cpt_codes,
            req.cpt_codes_explanation,
            req.medical_guidelines,
        )
    except InvalidJSONError as exc:
        raise HTTPException(status_code=500, detail="Invalid JSON response from completion API") from exc
    except CompletionError as exc:
        logger.warning("Code validation failed: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to validate codes") from exc


# ═══════════════════════════════════════════════════════════════════════════
# API: Orders
# ═══════════════════════════════════════════════════════════════════════════

@router.post("/api/orders", status_code=201)
def create_order_api(order: Order) -> dict:
    return _dump(fdb.create_order(order))


@router.get("/api/orders")
def list_orders_api(
    status: str = Query(default="all"),
    customer_id: str | None = Query(default=None),
) -> dict:
    orders = fdb.list_orders(customer_id=customer_id)
    return {"items": [_dump(o) for o in filter_by_status(orders, status)]}


class StatusUpdateRequest(BaseModel):
    status: str


@router.patch("/api/orders/{order_id}/status")
def update_order_status_api(order_id: str, req: StatusUpdateRequest) -> dict:
    try:
        return _dump(fdb.update_order_status(order_id, req.status))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# ═══════════════════════════════════════════════════════════════════════════
# API: Prior authorizations
# ═══════════════════════════════════════════════════════════════════════════

@router.post("/api/authorizations", status_code=201)
def create_authorization_api(auth: PriorAuthorization) -> dict:
    return _dump(fdb.create_prior_authorization(auth))


@router.get("/api/authorizations")
def list_authorizations_api(
    status: str = Query(default="all"),
    employee_id: str | None = Query(default=None),
) -> dict:
    auths = fdb.list_prior_authorizations(employee_id=employee_id)
    return {"items": [_dump(a) for a in filter_by_status(auths, status)]}


@router.patch("/api/authorizations/{auth_id}")
def update_authorization_api(auth_id: str, changes: dict[str, Any]) -> dict:
    try:
        return _dump(fdb.update_prior_authorization(auth_id, changes))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/api/authorizations/from-pdf", status_code=201)
async def create_authorization_from_pdf_api(
    file: UploadFile | None = File(None),
    employee_id: str | None = Form(None),
    medical_plan_name: str = Form(""),
    completion: CompletionClient = Depends(get_completion_client),
    retrieval: RetrievalClient = Depends(get_retrieval_client),
) -> dict:
    raw = await _read_pdf_upload(file)
    try:
        created = create_authorization_from_pdf(
            raw,
            completion,
            retrieval,
            employee_id=employee_id,
            medical_plan_name=medical_plan_name,
        )
    except PdfTextError as exc:
        logger.exception("Error processing PDF %s", file.filename)
        raise HTTPException(status_code=500, detail="Error processing PDF file") from exc
    except ExtractionError as exc:
        logger.warning("Incomplete extraction for %s: %s", file.filename, exc)
        raise HTTPException(status_code=500, detail="Could not extract patient name and date of birth") from exc
    except InvalidJSONError as exc:
        raise HTTPException(status_code=500, detail="Invalid JSON response from completion API") from exc
    except (CompletionError, RetrievalError) as exc:
        logger.warning("Authorization pipeline failed for %s: %s", file.filename, exc)
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return _dump(created)


def _get_authorization_or_404(auth_id: str) -> PriorAuthorization:
    auth = fdb.get_prior_authorization(auth_id)
    if auth is None:
        raise HTTPException(status_code=404, detail="Authorization not found")
    return auth


class ValidateEditRequest(BaseModel):
    icd_codes: list[str] | None = None
    cpt_codes: list[str] | None = None
    cpt_codes_explanation: str | None = None


@router.post("/api/authorizations/{auth_id}/validate")
def validate_authorization_api(
    auth_id: str,
    req: ValidateEditRequest,
    completion: CompletionClient = Depends(get_completion_client),
    retrieval: RetrievalClient = Depends(get_retrieval_client),
) -> dict:
    auth = _get_authorization_or_404(auth_id)
    try:
        return validate_edited_codes(
            completion,
            retrieval,
            req.icd_codes if req.icd_codes is not None else auth.icd_codes,
            req.cpt_codes if req.cpt_codes is not None else auth.cpt_codes,
            req.cpt_codes_explanation if req.cpt_codes_explanation is not None else auth.cpt_codes_explanation,
        )
    except InvalidJSONError as exc:
        raise HTTPException(status_code=500, detail="Invalid JSON response from completion API") from exc
    except (CompletionError, RetrievalError) as exc:
        logger.warning("Validation failed for authorization %s: %s", auth_id, exc)
        raise HTTPException(status_code=500, detail="Failed to validate codes") from exc


class SaveCodesRequest(BaseModel):
    patient_name: str | None = None
    patient_date_of_birth: str | None = None
    icd_codes: list[str]
    cpt_codes: list[str]
    cpt_codes_explanation: str = ""
    verdict: dict[str, Any] | None = None
    override_acknowledged: bool = False
    override_explanation: str = ""


@router.put("/api/authorizations/{auth_id}/codes")
def save_authorization_codes_api(auth_id: str, req: SaveCodesRequest) -> dict:
    _get_authorization_or_404(auth_id)
    try:
        is_override = require_saveable(req.verdict, req.override_acknowledged, req.override_explanation)
    except OverrideRequiredError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    explanation = req.cpt_codes_explanation
    if not is_override and req.verdict.get("explanation"):
        explanation = req.verdict["explanation"]

    changes: dict[str, Any] = {
        "icd_codes": req.icd_codes,
        "cpt_codes": req.cpt_codes,
        "cpt_codes_explanation": explanation,
        "is_override": is_override,
        "override_explanation": req.override_explanation if is_override else "",
    }
    if req.patient_name is not None:
        changes["patient_name"] = req.patient_name
    if req.patient_date_of_birth is not None:
        changes["patient_date_of_birth"] = req.patient_date_of_birth
    return _dump(fdb.update_prior_authorization(auth_id, changes))


# ═══════════════════════════════════════════════════════════════════════════
# App factory
# ═══════════════════════════════════════════════════════════════════════════

def create_app(settings: Settings | None = None, require_keys: bool = True) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Authdesk Orders & Prior Authorizations", version="0.1.0")
    app.state.settings = settings
    fdb.configure(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def startup_event() -> None:
        if require_keys:
            settings.require()

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            {"error": "Request validation failed", "detail": jsonable_errors(exc)},
            status_code=400,
        )

    @app.exception_handler(ConfigError)
    async def config_error(request: Request, exc: ConfigError) -> JSONResponse:
        logger.error("%s", exc)
        return JSONResponse({"error": "API key is missing"}, status_code=500)

    @app.exception_handler(fdb.RecordNotFoundError)
    async def not_found(request: Request, exc: fdb.RecordNotFoundError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=404)

    app.include_router(router)
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


app = create_app()
