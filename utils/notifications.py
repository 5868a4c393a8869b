import logging
from flask import current_app
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()


def send_revaluation_result(student, request_row, mark=None) -> bool:
    """Email a student that their revaluation request was decided.

    Best effort: returns False (and logs) when mail is not configured or the
    send fails.
    """
    if student is None or not student.email:
        logger.warning(
            f"No email on file for request {request_row.id}; skipping notification"
        )
        return False
    if not current_app.config.get("MAIL_DEFAULT_SENDER"):
        logger.info("Mail sender not configured; skipping revaluation notification")
        return False

    lines = [
        f"Dear {student.full_name or 'Student'},",
        "",
        f"Your revaluation request for {request_row.subject_code} is now {request_row.status}.",
    ]
    if mark is not None and request_row.revised_score is not None:
        lines.append(
            f"Revised score: {mark.score}/{mark.total_score} ({mark.status})."
        )
    if request_row.teacher_remarks:
        lines.extend(["", f"Remarks: {request_row.teacher_remarks}"])
    lines.extend(
        [
            "",
            "Log in to the revaluation portal for details.",
            "",
            "Examination Cell",
        ]
    )

    try:
        msg = Message(
            subject=f"Revaluation {request_row.status.title()} - {request_row.subject_code}",
            recipients=[student.email],
            body="\n".join(lines),
        )
        mail.send(msg)
        logger.info(
            f"Revaluation notification sent to {student.email} for request {request_row.id}"
        )
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {student.email}: {str(e)}")
        return False
