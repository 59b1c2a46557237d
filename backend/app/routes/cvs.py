"""CV endpoints: upload, list, detail, download, re-analysis, suggestions.

Upload stores the file and returns immediately with status PENDING; the LLM
analysis runs as a background task and clients poll GET /api/cvs/{id}.
"""

from pathlib import PurePath
from urllib.parse import quote

from fastapi import (
    APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, Request, Response, UploadFile,
)
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.constants import ALLOWED_CV_MIME_TYPES, MAX_UPLOAD_SIZE, RATE_LIMIT_PER_MINUTE
from app.core.langfuse_client import flush
from app.core.logger import logger
from app.core.security import get_current_developer
from app.core.storage import StorageError
from app.db.session import get_db
from app.db.tables import CV, AnalysisStatus, CvAnalysis, Developer
from app.models import (
    CvDetailResponse,
    CvResponse,
    CvUploadResponse,
    SuggestionsResponse,
)
from app.services.cv_analyzer import collect_warnings
from app.services.cv_improvement import generate_suggestions
from app.services.cv_pipeline import (
    AnalysisError,
    delete_cv,
    get_analysis,
    get_cv_for_developer,
    list_cvs,
    prepare_reanalysis,
    read_cv_file,
    run_analysis,
    store_cv,
)
from app.services.points import PointsError

router = APIRouter(prefix="/api/cvs", tags=["CVs"])
limiter = Limiter(key_func=get_remote_address)

_EXTENSION_MIME_TYPES = {ext: mime for mime, ext in ALLOWED_CV_MIME_TYPES.items()}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _validate_upload(file: UploadFile) -> tuple[str, bytes]:
    """Validate and read an uploaded CV. Returns (mime_type, data).

    Raises HTTPException on validation failure.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    mime_type = file.content_type
    if mime_type not in ALLOWED_CV_MIME_TYPES:
        # Browsers often send octet-stream for .docx
        mime_type = _EXTENSION_MIME_TYPES.get(PurePath(file.filename).suffix.lower().lstrip("."))
    if mime_type is None:
        raise HTTPException(status_code=400, detail="Invalid file type — upload a PDF, DOCX or TXT file")

    data = await file.read(MAX_UPLOAD_SIZE + 1)
    if len(data) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large (max {MAX_UPLOAD_SIZE // (1024 * 1024)}MB)",
        )
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return mime_type, data


def _content_disposition(filename: str) -> str:
    """Attachment header safe for any filename (RFC 6266 / RFC 5987).

    Header values are latin-1 on the wire, so non-ASCII names get an ASCII
    fallback plus a UTF-8 filename* parameter.
    """
    name = filename.replace("\r", "").replace("\n", "").replace('"', "")
    fallback = name.encode("ascii", "ignore").decode().strip()
    if fallback == name:
        return f'attachment; filename="{name}"'

    path = PurePath(name)
    stem = path.stem.encode("ascii", "ignore").decode().strip() or "cv"
    fallback = stem + path.suffix.encode("ascii", "ignore").decode()
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"


def _get_owned_cv(db: Session, developer: Developer, cv_id: str) -> CV:
    cv = get_cv_for_developer(db, developer.id, cv_id)
    if cv is None:
        raise HTTPException(status_code=404, detail="CV not found")
    return cv


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=CvUploadResponse, status_code=201)
async def upload_cv(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    mime_type, data = await _validate_upload(file)
    try:
        cv = await store_cv(db, developer, file.filename, mime_type, data)
    except StorageError as e:
        logger.error(f"CV upload failed for {developer.id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to store file")
    except SQLAlchemyError:
        raise HTTPException(status_code=500, detail="Failed to save CV")

    background_tasks.add_task(run_analysis, cv.id)
    return CvUploadResponse(
        message="CV uploaded — analysis started",
        cv_id=cv.id,
        status=cv.status,
        analysis_status="queued",
    )


@router.get("", response_model=list[CvResponse])
async def get_cvs(
    search: str | None = Query(default=None, max_length=200),
    status: AnalysisStatus | None = None,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    return list_cvs(db, developer.id, search=search, status=status)


@router.get("/{cv_id}", response_model=CvDetailResponse)
async def get_cv(
    cv_id: str,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    cv = _get_owned_cv(db, developer, cv_id)
    analysis = get_analysis(db, cv)
    detail = CvDetailResponse.model_validate(cv)
    detail.analysis = analysis
    detail.warnings = collect_warnings(analysis) if analysis else []
    return detail


@router.delete("/{cv_id}", status_code=204)
async def remove_cv(
    cv_id: str,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    cv = _get_owned_cv(db, developer, cv_id)
    try:
        await delete_cv(db, cv)
    except SQLAlchemyError:
        raise HTTPException(status_code=500, detail="Failed to delete CV")
    return Response(status_code=204)


@router.post("/{cv_id}/reanalyze", response_model=CvUploadResponse, status_code=202)
async def reanalyze_cv(
    cv_id: str,
    background_tasks: BackgroundTasks,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    cv = _get_owned_cv(db, developer, cv_id)
    try:
        prepare_reanalysis(db, cv)
    except AnalysisError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    background_tasks.add_task(run_analysis, cv.id, False)
    return CvUploadResponse(
        message="Re-analysis started",
        cv_id=cv.id,
        status=cv.status,
        analysis_status="queued",
    )


@router.get("/{cv_id}/download")
async def download_cv(
    cv_id: str,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    cv = _get_owned_cv(db, developer, cv_id)
    try:
        data = await read_cv_file(cv)
    except StorageError as e:
        logger.error(f"Download failed for CV {cv.id}: {e}")
        raise HTTPException(status_code=404, detail="Stored file not found")

    return Response(
        content=data,
        media_type=cv.mime_type,
        headers={"Content-Disposition": _content_disposition(cv.original_name)},
    )


@router.post("/{cv_id}/suggestions", response_model=SuggestionsResponse)
@limiter.limit(f"{RATE_LIMIT_PER_MINUTE}/minute")
async def cv_suggestions(
    request: Request,
    cv_id: str,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    """Improvement suggestions for an analyzed CV (charged on cache miss only)."""
    cv = _get_owned_cv(db, developer, cv_id)
    if cv.status != AnalysisStatus.COMPLETED or not cv.analysis_id:
        raise HTTPException(status_code=409, detail="CV analysis is not complete")
    analysis = db.get(CvAnalysis, cv.analysis_id)
    if analysis is None or not analysis.analysis_result:
        raise HTTPException(status_code=409, detail="CV analysis is not complete")

    try:
        result = await generate_suggestions(db, developer, analysis)
    except (PointsError, AnalysisError) as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    finally:
        flush()
    return result
