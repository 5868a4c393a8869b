import os
import uuid
import logging
from datetime import datetime

from flask import Blueprint, current_app, g, jsonify, request, send_from_directory
from werkzeug.utils import secure_filename

from models import db, RevaluationRequest
from utils import revaluation_status as rs
from utils.auth_utils import token_required
from utils.queues import OCR_JOB_NAME, add_with_timeout, get_ocr_queue

logger = logging.getLogger(__name__)

upload_bp = Blueprint("upload", __name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "tif", "tiff", "bmp", "pdf"}
REVIEWER_ROLES = ("teacher", "admin")


def allowed_file(filename):
    """Check if file has allowed extension"""
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def save_answer_sheet(file, upload_folder):
    """Save an uploaded sheet under a unique name and return the stored filename."""
    filename = secure_filename(file.filename) or "sheet"
    # Timestamp plus a short random suffix keeps same-second uploads apart
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    stored = f"{timestamp}_{uuid.uuid4().hex[:8]}_{filename}"
    file.save(os.path.join(upload_folder, stored))
    return stored


def remove_answer_sheets(names, upload_folder):
    for name in names:
        try:
            os.remove(os.path.join(upload_folder, name))
        except OSError as e:
            logger.warning(f"Could not remove orphaned upload {name}: {str(e)}")


def dispatch_ocr_job(request_id, file_urls) -> bool:
    """Enqueue OCR for an upload, giving up after OCR_ENQUEUE_TIMEOUT seconds."""
    timeout = float(current_app.config.get("OCR_ENQUEUE_TIMEOUT", 3))
    try:
        queue = get_ocr_queue()
        add_with_timeout(
            queue,
            OCR_JOB_NAME,
            {"requestId": request_id, "fileUrls": file_urls},
            timeout,
        )
        logger.info(f"OCR job queued for Request {request_id}")
        return True
    except Exception as e:
        # Files are stored; OCR can still be triggered by a re-upload
        logger.warning(f"Queue failed, but upload succeeded: {str(e)}")
        return False


@upload_bp.route("/api/upload/answer-sheet", methods=["POST"], endpoint="answer_sheet")
@token_required
def upload_answer_sheet():
    files = [f for f in request.files.getlist("files") if f and f.filename]
    request_id = (request.form.get("requestId") or "").strip()
    max_files = current_app.config.get("MAX_ANSWER_SHEETS", 5)

    if not files:
        return jsonify({"error": "No files uploaded"}), 400
    if len(files) > max_files:
        return jsonify({"error": f"At most {max_files} files can be uploaded"}), 400
    if not request_id:
        return jsonify({"error": "Request ID is required"}), 400

    rejected = [f.filename for f in files if not allowed_file(f.filename)]
    if rejected:
        return (
            jsonify({"error": f"Unsupported file type: {', '.join(rejected)}"}),
            400,
        )

    reval = (
        db.session.get(RevaluationRequest, int(request_id))
        if request_id.isdigit()
        else None
    )
    if reval is None:
        return jsonify({"error": "Revaluation Request not found"}), 404

    user = g.current_user
    if reval.student_id != user["id"] and user.get("role") not in REVIEWER_ROLES:
        return jsonify({"error": "Access denied for this request"}), 403
    if not rs.accepts_upload(reval.status):
        return (
            jsonify(
                {"error": f"Answer sheets cannot be uploaded while the request is {reval.status}"}
            ),
            409,
        )

    upload_folder = current_app.config["UPLOAD_FOLDER"]
    stored = []
    try:
        os.makedirs(upload_folder, exist_ok=True)
        for f in files:
            stored.append(save_answer_sheet(f, upload_folder))
        file_urls = [f"/uploads/{name}" for name in stored]

        # updated_at is bumped by the column's onupdate
        reval.answer_script_urls = file_urls
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Upload Error for request {request_id}: {str(e)}")
        remove_answer_sheets(stored, upload_folder)
        return jsonify({"error": "File upload failed"}), 500

    ocr_queued = dispatch_ocr_job(reval.id, file_urls)

    return jsonify(
        {
            "success": True,
            "message": "Files uploaded successfully.",
            "file_urls": file_urls,
            "request": reval.to_dict(),
            "ocr_queued": ocr_queued,
        }
    )


@upload_bp.route("/uploads/<path:filename>", methods=["GET"], endpoint="uploaded_file")
def uploaded_file(filename):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], filename)
