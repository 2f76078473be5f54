"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the QuizForce backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Services signal problems with
`LookupError` (404) and `ValueError` (400).

Endpoints implemented:
- GET /health
- GET /practice-exams/{exam_id}
- POST /exam/start
- POST /exam/save-answer
- POST /exam/submit
- POST /exam/restart
- GET /exam/session/{attempt_id}
- GET /exam/results/{attempt_id}
- POST /admin/import
"""

from fastapi import FastAPI, Depends, UploadFile, File, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import get_current_user, require_admin
from .schemas import StartExamIn, SaveAnswerIn, AttemptRefIn
from .config import settings

app = FastAPI(title="QuizForce API")
logger = logging.getLogger("quizforce.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/exam"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
    return response


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else 'not found')
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


@app.get('/practice-exams/{exam_id}')
def pre_exam(exam_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return pre-exam information: limits, knowledge areas and the user's history."""
    try:
        return services.CatalogService(db).pre_exam(user.id, exam_id)
    except LookupError as e:
        raise _http_error(e)


@app.post('/exam/start')
def start_exam(payload: StartExamIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Start an attempt or resume the one already in progress."""
    svc = services.ExamService(db)
    try:
        attempt = svc.start(user.id, payload.practice_exam_id, payload.mode)
        session_data = svc.session_data(user.id, attempt.id)
    except (LookupError, ValueError) as e:
        raise _http_error(e)
    return {'exam_attempt_id': attempt.id, 'session_data': session_data}


@app.post('/exam/save-answer')
def save_answer(payload: SaveAnswerIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Save (or clear) the selection for a single question.

    Multi-select questions send `answer_ids`; single-answer clients may
    send `answer_id`. An empty selection clears the question.
    """
    svc = services.ExamService(db)
    try:
        rows = svc.save_answer(user.id, payload.exam_attempt_id, payload.question_id,
                               payload.selected_ids(), payload.time_spent_seconds)
    except (LookupError, ValueError) as e:
        raise _http_error(e)
    return {
        'success': True,
        'user_answers': [
            {'id': r.id, 'question_id': r.question_id, 'answer_id': r.answer_id, 'time_spent_seconds': r.time_spent_seconds}
            for r in rows if r.answer_id is not None
        ],
    }


@app.post('/exam/submit')
def submit_exam(payload: AttemptRefIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Score an in-progress attempt; it can be submitted exactly once."""
    svc = services.ExamService(db)
    try:
        results = svc.submit(user.id, payload.exam_attempt_id)
    except (LookupError, ValueError) as e:
        raise _http_error(e)
    return {'success': True, 'results': results.model_dump()}


@app.post('/exam/restart')
def restart_exam(payload: AttemptRefIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Abandon an in-progress attempt and start over."""
    svc = services.ExamService(db)
    try:
        attempt = svc.restart(user.id, payload.exam_attempt_id)
    except (LookupError, ValueError) as e:
        raise _http_error(e)
    return {'exam_attempt_id': attempt.id}


@app.get('/exam/session/{attempt_id}')
def exam_session(attempt_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return questions, saved answers and remaining time for an attempt."""
    try:
        return services.ExamService(db).session_data(user.id, attempt_id)
    except LookupError as e:
        raise _http_error(e)


@app.get('/exam/results/{attempt_id}')
def exam_results(attempt_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the scored results of a submitted attempt for review."""
    try:
        results = services.ExamService(db).results(user.id, attempt_id)
    except (LookupError, ValueError) as e:
        raise _http_error(e)
    return results.model_dump()


@app.post('/admin/import')
def import_exam(file: UploadFile = File(...), db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    """Upload a JSON practice exam definition and import it.

    Returns a JSON summary with the created exam id, created count and
    any per-question validation errors.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail='no file')
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail='file too large')
    svc = services.ImportService(db)
    try:
        res = svc.import_file(content, file.filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JSONResponse(status_code=200, content=res)
