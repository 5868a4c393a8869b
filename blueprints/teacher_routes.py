import logging
from flask import Blueprint, g, jsonify, request
from sqlalchemy import or_

from models import db, User, Mark, RevaluationRequest, Subject
from utils import revaluation_status as rs
from utils.auth_utils import token_required, role_required
from utils.grading import compute_result, parse_int
from utils.live import emit_request_update
from utils.notifications import send_revaluation_result

logger = logging.getLogger(__name__)

teacher_bp = Blueprint("teacher", __name__)


def _visible_requests():
    """Requests the current reviewer may see.

    Admins see everything. Teachers see their department's subjects plus
    requests for codes missing from the catalog.
    """
    query = RevaluationRequest.query
    user = g.current_user
    if user.get("role") == "admin":
        return query
    department = user.get("department")
    query = query.outerjoin(
        Subject,
        db.func.upper(Subject.code) == db.func.upper(RevaluationRequest.subject_code),
    )
    return query.filter(or_(Subject.id.is_(None), Subject.department == department))


def _get_visible_request(request_id):
    return _visible_requests().filter(RevaluationRequest.id == request_id).first()


def _mark_for(reval):
    return Mark.query.filter(
        Mark.student_id == reval.student_id,
        db.func.upper(Mark.subject_code) == reval.subject_code.upper(),
    ).first()


def _remarks(data):
    remarks = data.get("remarks")
    return remarks.strip() if isinstance(remarks, str) and remarks.strip() else None


def _finish(reval, mark=None):
    emit_request_update(reval)
    send_revaluation_result(db.session.get(User, reval.student_id), reval, mark)


@teacher_bp.route(
    "/api/teacher/revaluations", methods=["GET"], endpoint="list_requests"
)
@token_required
@role_required("teacher", "admin")
def list_requests():
    query = _visible_requests()
    status = rs.normalize(request.args.get("status"))
    if status:
        if status not in rs.ALL_STATUSES:
            return jsonify({"error": f"Unknown status: {status}"}), 400
        query = query.filter(RevaluationRequest.status == status)
    rows = query.order_by(
        RevaluationRequest.created_at.desc(), RevaluationRequest.id.desc()
    ).all()
    return jsonify({"revaluation_requests": [r.to_dict() for r in rows]})


@teacher_bp.route(
    "/api/teacher/revaluations/<int:request_id>",
    methods=["GET"],
    endpoint="get_request",
)
@token_required
@role_required("teacher", "admin")
def get_request(request_id):
    reval = _get_visible_request(request_id)
    if not reval:
        return jsonify({"error": "Revaluation Request not found"}), 404
    mark = _mark_for(reval)
    return jsonify(
        {"request": reval.to_dict(), "mark": mark.to_dict() if mark else None}
    )


@teacher_bp.route(
    "/api/teacher/revaluations/<int:request_id>/publish",
    methods=["POST"],
    endpoint="publish_request",
)
@token_required
@role_required("teacher", "admin")
def publish_request(request_id):
    reval = _get_visible_request(request_id)
    if not reval:
        return jsonify({"error": "Revaluation Request not found"}), 404
    if not rs.can_transition(reval.status, rs.PUBLISHED):
        return (
            jsonify({"error": f"Cannot publish a request that is {reval.status}"}),
            409,
        )

    mark = _mark_for(reval)
    if not mark:
        return jsonify({"error": "No marks recorded for this subject"}), 404

    data = request.get_json(silent=True) or {}
    revised = parse_int(data.get("revised_score"))
    if revised is None or revised < 0 or revised > mark.total_score:
        return (
            jsonify(
                {"error": f"revised_score must be between 0 and {mark.total_score}"}
            ),
            400,
        )

    previous = mark.score
    try:
        mark.score = revised
        mark.grade, mark.status = compute_result(revised, mark.total_score)
        reval.revised_score = revised
        reval.teacher_remarks = _remarks(data)
        reval.reviewed_by = g.current_user["id"]
        rs.transition(reval, rs.PUBLISHED)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to publish request {request_id}: {str(e)}")
        return jsonify({"error": "Failed to publish result"}), 500

    logger.info(
        f"Request {reval.id} published by {g.current_user.get('email')}: "
        f"{reval.subject_code} {previous} -> {revised}"
    )
    _finish(reval, mark)
    return jsonify(
        {
            "message": "Revaluation result published.",
            "request": reval.to_dict(),
            "mark": mark.to_dict(),
        }
    )


@teacher_bp.route(
    "/api/teacher/revaluations/<int:request_id>/reject",
    methods=["POST"],
    endpoint="reject_request",
)
@token_required
@role_required("teacher", "admin")
def reject_request(request_id):
    reval = _get_visible_request(request_id)
    if not reval:
        return jsonify({"error": "Revaluation Request not found"}), 404
    if not rs.can_transition(reval.status, rs.REJECTED):
        return (
            jsonify({"error": f"Cannot reject a request that is {reval.status}"}),
            409,
        )

    data = request.get_json(silent=True) or {}
    try:
        reval.teacher_remarks = _remarks(data)
        reval.reviewed_by = g.current_user["id"]
        rs.transition(reval, rs.REJECTED)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to reject request {request_id}: {str(e)}")
        return jsonify({"error": "Failed to reject request"}), 500

    logger.info(f"Request {reval.id} rejected by {g.current_user.get('email')}")
    _finish(reval)
    return jsonify({"message": "Revaluation request rejected.", "request": reval.to_dict()})
