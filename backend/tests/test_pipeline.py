"""Tests for the CV upload → analysis → profile sync pipeline.

The LLM step (analyze_cv_text) is mocked; storage is a temporary
LocalStorage and the database is in-memory SQLite.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.storage import LocalStorage, StorageError, get_storage
from app.db.tables import CV, AnalysisStatus, CvAnalysis
from app.services.cv_pipeline import (
    AnalysisError,
    delete_cv,
    get_analysis,
    get_cv_for_developer,
    list_cvs,
    prepare_reanalysis,
    run_analysis,
    store_cv,
)
from app.services.text_extraction import TXT
from tests.conftest import SAMPLE_CV_TEXT


def _llm():
    llm = MagicMock()
    llm.last_provider = "openai"
    return llm


async def _upload(db, developer, name="dana.txt", text=SAMPLE_CV_TEXT):
    return await store_cv(db, developer, name, TXT, text.encode())


class TestLocalStorage:

    def test_put_get_delete(self, tmp_path):
        storage = LocalStorage(tmp_path)
        storage.put("cvs/dev-1/a.txt", b"hello", "text/plain")
        assert storage.get("cvs/dev-1/a.txt") == b"hello"

        storage.delete("cvs/dev-1/a.txt")
        with pytest.raises(StorageError):
            storage.get("cvs/dev-1/a.txt")

    @pytest.mark.parametrize("key", ["../x", "cvs/../../x", "/etc/passwd"])
    def test_local_storage_rejects_escaping_key(self, tmp_path, key):
        storage = LocalStorage(tmp_path / "root")
        with pytest.raises(StorageError, match="escapes storage root"):
            storage.put(key, b"x", "text/plain")
        assert not (tmp_path / "x").exists()


@pytest.mark.asyncio
class TestStoreCv:

    async def test_creates_pending_row_and_stores_file(self, db, developer):
        cv = await _upload(db, developer)

        assert cv.status == AnalysisStatus.PENDING
        assert cv.size == len(SAMPLE_CV_TEXT.encode())
        assert cv.storage_key.startswith("cvs/dev-1/")
        assert cv.storage_key.endswith(".txt")
        assert get_storage().get(cv.storage_key) == SAMPLE_CV_TEXT.encode()
        assert developer.total_xp == 25

    async def test_db_failure_removes_stored_file(self, db, developer):
        stored = {}
        storage = get_storage()
        real_put = storage.put

        def tracking_put(key, data, content_type):
            stored["key"] = key
            real_put(key, data, content_type)

        with patch.object(storage, "put", side_effect=tracking_put), \
             patch.object(db, "commit", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(SQLAlchemyError):
                await _upload(db, developer)

        with pytest.raises(StorageError):
            storage.get(stored["key"])


@pytest.mark.asyncio
class TestRunAnalysis:

    async def test_success_completes_cv_and_syncs_profile(self, db, developer, sample_analysis):
        cv = await _upload(db, developer)

        with patch("app.services.cv_pipeline.analyze_cv_text", AsyncMock(return_value=sample_analysis)) as analyze, \
             patch("app.services.cv_pipeline.get_llm_client", AsyncMock(return_value=_llm())):
            await run_analysis(cv.id)

        analyze.assert_awaited_once()
        assert "Ledgerline" in analyze.call_args.args[0]

        db.expire_all()
        cv = db.get(CV, cv.id)
        assert cv.status == AnalysisStatus.COMPLETED
        assert cv.improvement_score == 51
        assert cv.extracted_text.startswith("Dana Developer")

        record = db.get(CvAnalysis, cv.analysis_id)
        assert record.provider == "openai"
        assert record.analysis_result["contact_info"]["name"] == "Dana Developer"
        assert get_analysis(db, cv).skills[0].name == "Python"

        assert {ds.skill.name for ds in developer.skills} == {"Python", "FastAPI", "Redis", "AWS"}
        assert len(developer.experience) == 2
        # 25 for the upload + 50 for the completed analysis
        assert developer.total_xp == 75

    async def test_llm_failure_marks_cv_failed(self, db, developer):
        cv = await _upload(db, developer)

        with patch("app.services.cv_pipeline.analyze_cv_text", AsyncMock(return_value=None)):
            await run_analysis(cv.id)

        db.expire_all()
        cv = db.get(CV, cv.id)
        assert cv.status == AnalysisStatus.FAILED
        assert "AI analysis failed" in cv.error_message
        assert cv.analysis_id is None
        assert "Ledgerline" in cv.extracted_text
        assert developer.skills == []

    async def test_missing_file_marks_cv_failed(self, db, developer):
        cv = await _upload(db, developer)
        get_storage().delete(cv.storage_key)

        await run_analysis(cv.id)

        db.expire_all()
        cv = db.get(CV, cv.id)
        assert cv.status == AnalysisStatus.FAILED
        assert "Object not found" in cv.error_message

    async def test_unexpected_error_is_contained(self, db, developer):
        cv = await _upload(db, developer)

        with patch("app.services.cv_pipeline.analyze_cv_text", AsyncMock(side_effect=RuntimeError("kaboom"))):
            await run_analysis(cv.id)

        db.expire_all()
        cv = db.get(CV, cv.id)
        assert cv.status == AnalysisStatus.FAILED
        assert cv.error_message == "Internal error during analysis"

    async def test_deleted_cv_is_a_no_op(self):
        await run_analysis("does-not-exist")

    async def test_reanalysis_bypasses_cache(self, db, developer, sample_analysis):
        cv = await _upload(db, developer)

        with patch("app.services.cv_pipeline.analyze_cv_text", AsyncMock(return_value=sample_analysis)) as analyze, \
             patch("app.services.cv_pipeline.get_llm_client", AsyncMock(return_value=_llm())):
            await run_analysis(cv.id, use_cache=False)

        assert analyze.call_args.kwargs == {"use_cache": False}


@pytest.mark.asyncio
class TestQueries:

    async def test_list_filters_by_name_and_status(self, db, developer):
        first = await _upload(db, developer, name="Dana CV 2025.txt")
        await _upload(db, developer, name="cover-notes.txt")
        first.status = AnalysisStatus.COMPLETED
        db.commit()

        assert [c.original_name for c in list_cvs(db, developer.id, search="dana cv")] == ["Dana CV 2025.txt"]
        assert len(list_cvs(db, developer.id)) == 2
        assert [c.id for c in list_cvs(db, developer.id, status=AnalysisStatus.COMPLETED)] == [first.id]

    async def test_cv_of_other_developer_is_invisible(self, db, developer):
        cv = await _upload(db, developer)
        assert get_cv_for_developer(db, developer.id, cv.id) is cv
        assert get_cv_for_developer(db, "someone-else", cv.id) is None

    async def test_reanalysis_blocked_while_analyzing(self, db, developer):
        cv = await _upload(db, developer)
        cv.status = AnalysisStatus.ANALYZING
        db.commit()

        with pytest.raises(AnalysisError) as exc:
            prepare_reanalysis(db, cv)
        assert exc.value.status_code == 409

        cv.status = AnalysisStatus.FAILED
        cv.error_message = "old failure"
        db.commit()
        prepare_reanalysis(db, cv)
        assert cv.status == AnalysisStatus.PENDING
        assert cv.error_message is None

    async def test_delete_removes_row_analyses_and_file(self, db, developer, sample_analysis):
        cv = await _upload(db, developer)
        with patch("app.services.cv_pipeline.analyze_cv_text", AsyncMock(return_value=sample_analysis)), \
             patch("app.services.cv_pipeline.get_llm_client", AsyncMock(return_value=_llm())):
            await run_analysis(cv.id)
        db.expire_all()
        cv = db.get(CV, cv.id)
        key = cv.storage_key

        await delete_cv(db, cv)

        assert db.scalars(select(CV)).all() == []
        assert db.scalars(select(CvAnalysis)).all() == []
        with pytest.raises(StorageError):
            get_storage().get(key)
