import logging
from flask import Blueprint, jsonify, request
from sqlalchemy.exc import IntegrityError

from models import db, User, Student, Mark, RevaluationRequest
from utils import revaluation_status as rs
from utils.auth_utils import token_required, current_user_id
from utils.db_conn import is_unique_violation
from utils.grading import compute_result, parse_int, preview_grade, resolve_total

logger = logging.getLogger(__name__)

student_bp = Blueprint("student", __name__)


def get_student_by_user_id(user_id):
    return Student.query.filter_by(user_id=user_id).first()


def get_student_marks(user_id):
    return (
        Mark.query.filter_by(student_id=user_id)
        .order_by(Mark.created_at.desc(), Mark.id.desc())
        .all()
    )


def count_failures(user_id) -> int:
    return Mark.query.filter_by(student_id=user_id, status="Fail").count()


def get_requests_by_student(user_id):
    return (
        RevaluationRequest.query.filter_by(student_id=user_id)
        .order_by(RevaluationRequest.created_at.desc(), RevaluationRequest.id.desc())
        .all()
    )


@student_bp.route("/api/student/dashboard", methods=["GET"], endpoint="dashboard")
@token_required
def dashboard():
    user_id = current_user_id()

    student = get_student_by_user_id(user_id)
    if not student:
        return (
            jsonify({"message": "Student profile not found. Please contact admin."}),
            404,
        )

    user_profile = db.session.get(User, user_id)
    marks = [m.to_dict() for m in get_student_marks(user_id)]
    failed_count = count_failures(user_id)
    requests = [r.to_dict() for r in get_requests_by_student(user_id)]

    return jsonify(
        {
            "profile": user_profile.to_dict() if user_profile else None,
            "student_info": student.to_dict(),
            "marks": marks,
            "failed_subjects": failed_count,
            "revaluation_requests": requests,
            "stats": rs.summarize(requests),
        }
    )


@student_bp.route("/api/student/add-subject", methods=["POST"], endpoint="add_subject")
@token_required
def add_subject():
    user_id = current_user_id()
    data = request.get_json(silent=True) or {}
    subject_code = data.get("subject_code")
    subject_name = data.get("subject_name")
    marks_obtained = data.get("marks_obtained")

    if (
        not isinstance(subject_code, str)
        or not subject_code.strip()
        or marks_obtained is None
    ):
        return (
            jsonify(
                {
                    "error": "Missing required fields (subject_code and marks_obtained required)"
                }
            ),
            400,
        )

    parsed_marks = parse_int(marks_obtained)
    parsed_total = resolve_total(data.get("total_marks"))
    if parsed_marks is None or parsed_marks < 0:
        return jsonify({"error": "Invalid marks value"}), 400

    grade, status = compute_result(parsed_marks, parsed_total)

    student = get_student_by_user_id(user_id)
    reg_no = student.reg_no if student and student.reg_no else "N/A"

    code = subject_code.strip()
    name = subject_name.strip() if isinstance(subject_name, str) else ""
    mark = Mark(
        student_id=user_id,
        subject_code=code,
        subject_name=name or code,
        score=parsed_marks,
        total_score=parsed_total,
        grade=grade,
        status=status,
        reg_no=reg_no,
    )
    try:
        db.session.add(mark)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        if is_unique_violation(e):
            return jsonify({"error": "Subject already exists."}), 400
        logger.error(f"Add Subject integrity error for {user_id}: {str(e)}")
        return jsonify({"error": "Database insertion failed"}), 500
    except Exception as e:
        db.session.rollback()
        logger.error(f"Add Subject Error for {user_id}: {str(e)}")
        return jsonify({"error": "Database insertion failed"}), 500

    logger.info(f"Subject {code} added for student {reg_no} ({status})")
    return (
        jsonify({"message": "Subject added successfully!", "subject": mark.to_dict()}),
        201,
    )


@student_bp.route(
    "/api/student/revaluations", methods=["GET"], endpoint="list_revaluations"
)
@token_required
def list_revaluations():
    requests = [r.to_dict() for r in get_requests_by_student(current_user_id())]
    return jsonify({"revaluation_requests": requests, "stats": rs.summarize(requests)})


@student_bp.route(
    "/api/student/revaluations", methods=["POST"], endpoint="apply_revaluation"
)
@token_required
def apply_revaluation():
    user_id = current_user_id()
    data = request.get_json(silent=True) or {}
    subject_code = data.get("subject_code")
    if not isinstance(subject_code, str) or not subject_code.strip():
        return jsonify({"error": "subject_code is required"}), 400
    code = subject_code.strip().upper()

    mark = Mark.query.filter(
        Mark.student_id == user_id, db.func.upper(Mark.subject_code) == code
    ).first()
    if not mark:
        return jsonify({"error": "No marks recorded for this subject"}), 404

    existing = RevaluationRequest.query.filter(
        RevaluationRequest.student_id == user_id,
        db.func.upper(RevaluationRequest.subject_code) == code,
    ).all()
    if any(rs.is_active(r.status) for r in existing):
        return jsonify({"error": "You have already applied for this subject."}), 409

    reval = RevaluationRequest(
        student_id=user_id,
        subject_code=mark.subject_code,
        status=rs.SUBMITTED,
        answer_script_urls=[],
    )
    try:
        db.session.add(reval)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Revaluation request failed for {user_id}/{code}: {str(e)}")
        return jsonify({"error": "Failed to submit revaluation request"}), 500

    logger.info(f"Revaluation request {reval.id} submitted for {mark.subject_code}")
    return (
        jsonify(
            {
                "message": "Revaluation request submitted.",
                "request": reval.to_dict(),
            }
        ),
        201,
    )


@student_bp.route(
    "/api/student/grade-preview", methods=["POST"], endpoint="grade_preview"
)
@token_required
def grade_preview():
    data = request.get_json(silent=True) or {}
    marks = parse_int(data.get("marks"))
    if marks is None or marks < 0:
        return jsonify({"error": "Invalid marks value"}), 400
    total = resolve_total(data.get("total_marks"))
    return jsonify(preview_grade(marks, total))
