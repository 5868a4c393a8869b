SUBMITTED = "SUBMITTED"
PROCESSING = "PROCESSING"
TEACHER_REVIEW = "TEACHER_REVIEW"
PUBLISHED = "PUBLISHED"
REJECTED = "REJECTED"

ALL_STATUSES = (SUBMITTED, PROCESSING, TEACHER_REVIEW, PUBLISHED, REJECTED)

PENDING_STATUSES = (SUBMITTED, PROCESSING, TEACHER_REVIEW)
COMPLETED_STATUSES = (PUBLISHED,)

ALLOWED_TRANSITIONS = {
    SUBMITTED: {PROCESSING, REJECTED},
    # PROCESSING -> SUBMITTED when OCR fails and the request goes back in line
    PROCESSING: {TEACHER_REVIEW, SUBMITTED, REJECTED},
    # Re-upload during review sends the scripts through OCR again
    TEACHER_REVIEW: {PROCESSING, PUBLISHED, REJECTED},
    PUBLISHED: set(),
    REJECTED: set(),
}


class InvalidTransition(Exception):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move request from {current} to {target}")


def normalize(status) -> str:
    return str(status or "").strip().upper()


def can_transition(current, target) -> bool:
    return normalize(target) in ALLOWED_TRANSITIONS.get(normalize(current), set())


def transition(request_row, target):
    """Move a RevaluationRequest to ``target`` or raise InvalidTransition."""
    if not can_transition(request_row.status, target):
        raise InvalidTransition(request_row.status, target)
    request_row.status = normalize(target)
    return request_row


# Scripts are frozen while OCR runs and once a request is decided
UPLOAD_STATUSES = (SUBMITTED, TEACHER_REVIEW)


def accepts_upload(status) -> bool:
    return normalize(status) in UPLOAD_STATUSES


def is_active(status) -> bool:
    """A request blocks a new application for the same subject unless rejected."""
    return normalize(status) != REJECTED


def summarize(requests) -> dict:
    """Dashboard counters over a list of request dicts."""
    statuses = [normalize(r.get("status")) for r in requests]
    return {
        "total": len(statuses),
        "pending": sum(1 for s in statuses if s in PENDING_STATUSES),
        "completed": sum(1 for s in statuses if s in COMPLETED_STATUSES),
    }
