import os
import logging

import fitz  # PyMuPDF
import pytesseract
from flask import current_app
from PIL import Image

from models import db, RevaluationRequest
from utils import revaluation_status as rs
from utils.live import emit_request_update
from utils.queues import OCR_JOB_NAME

logger = logging.getLogger(__name__)

PDF_RENDER_DPI = 200


def resolve_upload_path(file_url: str) -> str:
    """Map a public "/uploads/<name>" URL to its file in UPLOAD_FOLDER."""
    filename = os.path.basename(file_url.rstrip("/"))
    return os.path.join(current_app.config["UPLOAD_FOLDER"], filename)


def _pdf_page_images(path):
    with fitz.open(path) as document:
        for page in document:
            pix = page.get_pixmap(dpi=PDF_RENDER_DPI)
            yield Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


def extract_text(path: str) -> str:
    """OCR a single answer sheet (image or PDF) and return its text."""
    if path.lower().endswith(".pdf"):
        pages = [pytesseract.image_to_string(img) for img in _pdf_page_images(path)]
        return "\n".join(p.strip() for p in pages)
    with Image.open(path) as img:
        return pytesseract.image_to_string(img).strip()


def _set_status(request_row, status):
    rs.transition(request_row, status)
    db.session.commit()
    emit_request_update(request_row)


def process_ocr_job(job: dict) -> bool:
    """Run OCR for one queued job. Must be called inside an app context.

    Returns True when the request reached TEACHER_REVIEW.
    """
    if job.get("name") != OCR_JOB_NAME:
        logger.warning(f"Ignoring unknown job {job.get('name')!r} ({job.get('id')})")
        return False

    data = job.get("data") or {}
    request_id = data.get("requestId")
    try:
        request_row = db.session.get(RevaluationRequest, int(request_id))
    except (TypeError, ValueError):
        request_row = None
    if request_row is None:
        logger.error(f"OCR job {job.get('id')}: request {request_id!r} not found")
        return False

    if not rs.can_transition(request_row.status, rs.PROCESSING):
        logger.warning(
            f"OCR job {job.get('id')}: request {request_row.id} is {request_row.status}; skipping"
        )
        return False

    _set_status(request_row, rs.PROCESSING)
    # The row holds the latest upload; a job queued before a re-upload carries stale URLs
    file_urls = request_row.answer_script_urls or data.get("fileUrls") or []
    if data.get("fileUrls") and file_urls != data.get("fileUrls"):
        logger.info(f"OCR job {job.get('id')}: using the latest upload for request {request_row.id}")

    try:
        chunks = []
        for url in file_urls:
            text = extract_text(resolve_upload_path(url))
            chunks.append(f"--- {os.path.basename(url)} ---\n{text}")
    except Exception as e:
        logger.error(f"OCR failed for request {request_row.id}: {str(e)}")
        db.session.rollback()
        _set_status(request_row, rs.SUBMITTED)
        return False

    request_row.ocr_text = "\n\n".join(chunks)
    _set_status(request_row, rs.TEACHER_REVIEW)
    logger.info(
        f"OCR completed for request {request_row.id} ({len(file_urls)} file(s))"
    )
    return True


def run_worker(app, queue, max_jobs=None, idle_timeout=5):
    """Consume OCR jobs until interrupted (or ``max_jobs`` have been handled)."""
    handled = 0
    logger.info(f"OCR worker listening on {queue.key}")
    while max_jobs is None or handled < max_jobs:
        job = queue.pop(timeout=idle_timeout)
        if job is None:
            if max_jobs is not None:
                break
            continue
        with app.app_context():
            try:
                process_ocr_job(job)
            except Exception as e:
                db.session.rollback()
                logger.error(f"OCR job {job.get('id')} crashed: {str(e)}")
        handled += 1
    return handled
