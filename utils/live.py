import logging
from flask_socketio import SocketIO, emit, join_room, leave_room

from utils.auth_utils import AuthError, decode_access_token, user_from_claims

socketio = SocketIO()
_logger = logging.getLogger(__name__)


def _student_room(student_id) -> str:
    return f"student-{student_id}"


def register_socketio_handlers(sio: SocketIO):
    """Register Socket.IO event handlers. Call after socketio.init_app(app)."""

    @sio.on("connect")
    def _on_connect():
        emit("connected", {"message": "connected"})

    @sio.on("subscribe_requests")
    def _on_subscribe_requests(data):
        token = (data or {}).get("token")
        if not token:
            emit("error", {"message": "token required"})
            return
        try:
            user = user_from_claims(decode_access_token(token))
        except AuthError as e:
            emit("error", {"message": str(e)})
            return
        join_room(_student_room(user["id"]))
        emit("subscribed", {"student_id": user["id"]})

    @sio.on("unsubscribe_requests")
    def _on_unsubscribe_requests(data):
        student_id = (data or {}).get("student_id")
        if student_id:
            leave_room(_student_room(student_id))


def emit_request_update(request_row):
    """Push a request's new status to the owning student's room."""
    try:
        socketio.emit(
            "revaluation_status",
            {
                "request_id": request_row.id,
                "subject_code": request_row.subject_code,
                "status": request_row.status,
            },
            to=_student_room(request_row.student_id),
        )
    except Exception as e:
        _logger.error(
            f"Failed to emit status update for request {request_row.id}: {str(e)}"
        )


def init_live(app):
    """Attach Socket.IO to the app.

    With SOCKETIO_MESSAGE_QUEUE set, emits go through that queue, so the OCR
    worker process can reach clients connected to the API process.
    """
    queue_url = app.config.get("SOCKETIO_MESSAGE_QUEUE")
    if queue_url:
        options = {"message_queue": queue_url}
    else:
        # socketio keeps options across init_app calls; drop any earlier queue manager
        options = {"client_manager": None}
    socketio.init_app(
        app,
        cors_allowed_origins=app.config.get("CORS_ORIGINS") or "*",
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE", "threading"),
        **options,
    )
    register_socketio_handlers(socketio)
    _logger.info(f"Socket.IO live updates initialized for {app.import_name}")
