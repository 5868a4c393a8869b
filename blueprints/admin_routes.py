import logging
from flask import Blueprint, request, jsonify, g
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from models import db, User, Subject, AllowedTeacher
from utils.auth_utils import token_required, role_required
from utils.db_conn import is_unique_violation
from utils.identity import (
    DUPLICATE_EMAIL_MESSAGE,
    DuplicateEmailError,
    IdentityError,
    get_identity_service,
)

logger = logging.getLogger(__name__)


admin_bp = Blueprint("admin", __name__)


def _text(data, key):
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


def _apply_filters(query, search_columns, department_column):
    search = (request.args.get("search") or "").strip().lower()
    department = (request.args.get("department") or "All").strip()
    if search:
        query = query.filter(
            or_(*[db.func.lower(col).contains(search) for col in search_columns])
        )
    if department and department != "All":
        query = query.filter(department_column == department)
    return query


def _add_to_whitelist(email):
    """Best-effort insert into allowed_teachers; an existing entry is fine."""
    try:
        db.session.add(AllowedTeacher(email=email))
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        if not is_unique_violation(e):
            logger.warning(f"Whitelist insertion warning for {email}: {str(e)}")
    except Exception as e:
        db.session.rollback()
        logger.warning(f"Whitelist insertion warning for {email}: {str(e)}")


@admin_bp.route(
    "/api/admin/create-teacher", methods=["POST"], endpoint="create_teacher"
)
@token_required
@role_required("admin")
def create_teacher():
    data = request.get_json(silent=True) or {}
    email = _text(data, "email").lower()
    password = data.get("password") or ""
    full_name = _text(data, "full_name")
    department = _text(data, "department")

    if not email or not password or not full_name or not department:
        return jsonify({"error": "All fields are required"}), 400

    logger.info(f"Creating teacher account for: {email}")

    if User.query.filter(db.func.lower(User.email) == email).first():
        logger.warning(f"Teacher creation rejected, email exists locally: {email}")
        return jsonify({"error": DUPLICATE_EMAIL_MESSAGE}), 422

    identity = get_identity_service()

    # Step 1: identity provider account
    try:
        auth_user = identity.create_user(
            email,
            password,
            {"full_name": full_name, "role": "teacher", "department": department},
        )
    except DuplicateEmailError:
        return jsonify({"error": DUPLICATE_EMAIL_MESSAGE}), 422
    except IdentityError as e:
        logger.error(f"Create Teacher Error: {str(e)}")
        return jsonify({"error": "Failed to create teacher account"}), 500

    # Step 2: mirror row in users
    try:
        db.session.merge(
            User(
                id=auth_user["id"],
                email=email,
                full_name=full_name,
                department=department,
                role="teacher",
            )
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Database insert error for teacher {email}: {str(e)}")
        # Don't leave an identity account without a local row
        try:
            identity.delete_user(auth_user["id"])
            logger.info(f"Rolled back identity user {auth_user['id']} for {email}")
        except IdentityError as cleanup_error:
            logger.error(
                f"Orphaned identity user {auth_user['id']} ({email}): {str(cleanup_error)}"
            )
        return jsonify({"error": "Failed to create teacher account"}), 500

    # Step 3: whitelist
    _add_to_whitelist(email)

    logger.info(f"Teacher created: {email} by admin {g.current_user.get('email')}")
    return (
        jsonify(
            {"message": "Teacher account created successfully!", "user": auth_user}
        ),
        201,
    )


@admin_bp.route("/api/admin/faculty", methods=["GET"], endpoint="list_faculty")
@token_required
@role_required("admin")
def list_faculty():
    query = User.query.filter(User.role == "teacher")
    query = _apply_filters(query, (User.full_name, User.email), User.department)
    faculty = query.order_by(User.created_at.desc()).all()
    return jsonify({"faculty": [f.to_dict() for f in faculty]})


@admin_bp.route(
    "/api/admin/faculty/<user_id>", methods=["DELETE"], endpoint="delete_faculty"
)
@token_required
@role_required("admin")
def delete_faculty(user_id):
    teacher = User.query.filter_by(id=user_id, role="teacher").first()
    if not teacher:
        return jsonify({"error": "Teacher not found"}), 404

    email = teacher.email
    try:
        db.session.delete(teacher)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to delete teacher {user_id}: {str(e)}")
        return jsonify({"error": "Delete failed"}), 500

    try:
        get_identity_service().delete_user(user_id)
    except IdentityError as e:
        logger.warning(f"Identity user {user_id} not removed: {str(e)}")

    logger.info(f"Teacher {email} deleted by admin {g.current_user.get('email')}")
    return jsonify({"message": "Record deleted"})


@admin_bp.route("/api/admin/subjects", methods=["GET"], endpoint="list_subjects")
@token_required
@role_required("admin")
def list_subjects():
    query = _apply_filters(Subject.query, (Subject.name, Subject.code), Subject.department)
    subjects = query.order_by(Subject.code.asc()).all()
    return jsonify({"subjects": [s.to_dict() for s in subjects]})


@admin_bp.route("/api/admin/subjects", methods=["POST"], endpoint="create_subject")
@token_required
@role_required("admin")
def create_subject():
    data = request.get_json(silent=True) or {}
    code = _text(data, "code").upper()
    name = _text(data, "name")
    department = _text(data, "department")

    if not code or not name or not department:
        return jsonify({"error": "Subject code, name and department are required"}), 400

    subject = Subject(code=code, name=name, department=department)
    try:
        db.session.add(subject)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        if is_unique_violation(e):
            return jsonify({"error": "Subject already exists."}), 409
        logger.error(f"Failed to add subject {code}: {str(e)}")
        return jsonify({"error": "Failed to add subject"}), 500
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to add subject {code}: {str(e)}")
        return jsonify({"error": "Failed to add subject"}), 500

    logger.info(f"Subject {code} added to catalog ({department})")
    return (
        jsonify({"message": "Subject added successfully!", "subject": subject.to_dict()}),
        201,
    )


@admin_bp.route(
    "/api/admin/subjects/<int:subject_id>",
    methods=["DELETE"],
    endpoint="delete_subject",
)
@token_required
@role_required("admin")
def delete_subject(subject_id):
    subject = db.session.get(Subject, subject_id)
    if not subject:
        return jsonify({"error": "Subject not found"}), 404

    code = subject.code
    try:
        db.session.delete(subject)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to delete subject {subject_id}: {str(e)}")
        return jsonify({"error": "Delete failed"}), 500

    logger.info(f"Subject {code} removed from catalog")
    return jsonify({"message": "Record deleted"})
