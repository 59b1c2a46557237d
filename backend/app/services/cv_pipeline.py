"""CV upload → analysis → persistence pipeline.

Status flow for a CV row:

    PENDING ──▶ ANALYZING ──▶ COMPLETED
                    │
                    └──────▶ FAILED   (error_message set)

The upload request only stores the file and creates the PENDING row;
run_analysis runs afterwards as a background task with its own session.
Everything the analysis writes (CvAnalysis row, CV status/score, profile
sync, XP) is committed in one transaction, so a failure never leaves a
half-written profile behind.
"""

import asyncio
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.constants import ALLOWED_CV_MIME_TYPES
from app.core.langfuse_client import flush
from app.core.llm import get_llm_client
from app.core.logger import logger
from app.core.storage import StorageError, get_storage
from app.db.session import SessionLocal
from app.db.tables import CV, AnalysisStatus, CvAnalysis, Developer, new_id, utcnow
from app.models import CvAnalysisData
from app.services.cv_analyzer import analyze_cv_text, calculate_improvement_score
from app.services.experience import invalidate_experience_cache
from app.services.points import award_xp
from app.services.profile import apply_analysis_to_profile
from app.services.text_extraction import TextExtractionError, extract_text


class AnalysisError(Exception):
    """Raised when a CV cannot be analyzed or its state forbids the action."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail)


def build_storage_key(developer_id: str, mime_type: str) -> str:
    return f"cvs/{developer_id}/{uuid.uuid4().hex}.{ALLOWED_CV_MIME_TYPES[mime_type]}"


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


async def store_cv(
    db: Session,
    developer: Developer,
    filename: str,
    mime_type: str,
    data: bytes,
) -> CV:
    """Store the file and create a PENDING CV row.

    If the database write fails the stored object is removed again.
    """
    storage = get_storage()
    key = build_storage_key(developer.id, mime_type)
    await asyncio.to_thread(storage.put, key, data, mime_type)

    cv = CV(
        id=new_id(),
        developer_id=developer.id,
        original_name=filename,
        mime_type=mime_type,
        size=len(data),
        storage_key=key,
        status=AnalysisStatus.PENDING,
    )
    db.add(cv)
    award_xp(developer, "CV_UPLOADED")
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(f"CV row insert failed — removing stored object {key}")
        await asyncio.to_thread(storage.delete, key)
        raise

    logger.info(f"Stored CV {cv.id} for {developer.id} ({mime_type}, {len(data)} bytes)")
    return cv


# ---------------------------------------------------------------------------
# Analysis (background)
# ---------------------------------------------------------------------------


def _mark_failed(db: Session, cv_id: str, message: str) -> None:
    cv = db.get(CV, cv_id)
    if cv is None:
        return
    cv.status = AnalysisStatus.FAILED
    cv.error_message = message[:1000]
    db.commit()
    logger.warning(f"CV {cv_id} analysis FAILED: {message}")


async def _analyze(db: Session, cv: CV, use_cache: bool) -> None:
    data = await asyncio.to_thread(get_storage().get, cv.storage_key)
    parsed = await asyncio.to_thread(extract_text, data, cv.mime_type)
    cv.extracted_text = parsed.text
    db.commit()

    analysis = await analyze_cv_text(parsed.text, use_cache=use_cache)
    if analysis is None:
        raise AnalysisError(502, "AI analysis failed — no usable result from the LLM")
    llm = await get_llm_client()

    developer = db.get(Developer, cv.developer_id)
    record = CvAnalysis(
        id=new_id(),
        developer_id=cv.developer_id,
        cv_id=cv.id,
        status=AnalysisStatus.COMPLETED,
        analysis_result=analysis.model_dump(mode="json"),
        provider=llm.last_provider,
        analyzed_at=utcnow(),
    )
    db.add(record)

    cv.status = AnalysisStatus.COMPLETED
    cv.analysis_id = record.id
    cv.improvement_score = calculate_improvement_score(analysis)
    cv.error_message = None

    apply_analysis_to_profile(db, developer, analysis)
    award_xp(developer, "CV_ANALYSIS_COMPLETED")
    db.commit()
    logger.info(f"CV {cv.id} analysis COMPLETED (score={cv.improvement_score})")


async def run_analysis(cv_id: str, use_cache: bool = True) -> None:
    """Analyze a stored CV. Safe to run as a FastAPI background task."""
    db = SessionLocal()
    try:
        cv = db.get(CV, cv_id)
        if cv is None:
            logger.warning(f"run_analysis: CV {cv_id} no longer exists")
            return

        cv.status = AnalysisStatus.ANALYZING
        cv.error_message = None
        db.commit()

        try:
            await _analyze(db, cv, use_cache)
        except AnalysisError as e:
            db.rollback()
            _mark_failed(db, cv_id, e.detail)
            return
        except (StorageError, TextExtractionError, ValueError) as e:
            db.rollback()
            _mark_failed(db, cv_id, str(e))
            return
        except Exception as e:
            logger.error(f"Unexpected analysis error for CV {cv_id}: {e}", exc_info=True)
            db.rollback()
            _mark_failed(db, cv_id, "Internal error during analysis")
            return

        await invalidate_experience_cache(cv.developer_id)
    finally:
        db.close()
        flush()


def prepare_reanalysis(db: Session, cv: CV) -> None:
    """Reset a CV to PENDING so run_analysis can be scheduled again."""
    if cv.status == AnalysisStatus.ANALYZING:
        raise AnalysisError(409, "CV analysis is already in progress")
    cv.status = AnalysisStatus.PENDING
    cv.error_message = None
    db.commit()


# ---------------------------------------------------------------------------
# Queries / delete
# ---------------------------------------------------------------------------


def list_cvs(
    db: Session,
    developer_id: str,
    search: str | None = None,
    status: AnalysisStatus | None = None,
) -> list[CV]:
    stmt = select(CV).where(CV.developer_id == developer_id)
    if search:
        stmt = stmt.where(func.lower(CV.original_name).contains(search.lower()))
    if status:
        stmt = stmt.where(CV.status == status)
    stmt = stmt.order_by(CV.upload_date.desc())
    return list(db.scalars(stmt))


def get_cv_for_developer(db: Session, developer_id: str, cv_id: str) -> CV | None:
    cv = db.get(CV, cv_id)
    if cv is None or cv.developer_id != developer_id:
        return None
    return cv


def get_analysis(db: Session, cv: CV) -> CvAnalysisData | None:
    if not cv.analysis_id:
        return None
    record = db.get(CvAnalysis, cv.analysis_id)
    if record is None or not record.analysis_result:
        return None
    return CvAnalysisData.model_validate(record.analysis_result)


async def read_cv_file(cv: CV) -> bytes:
    return await asyncio.to_thread(get_storage().get, cv.storage_key)


async def delete_cv(db: Session, cv: CV) -> None:
    """Remove the stored object, then the CV and its analyses in one transaction."""
    try:
        await asyncio.to_thread(get_storage().delete, cv.storage_key)
    except StorageError as e:
        logger.warning(f"Could not delete stored object for CV {cv.id}: {e}")

    try:
        for analysis in list(cv.analyses):
            db.delete(analysis)
        db.delete(cv)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(f"Deleted CV {cv.id}")
