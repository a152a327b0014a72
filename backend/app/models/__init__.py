from app.models.user import User
from app.models.video import Video
from app.models.security_audit import SecurityAuditEvent

__all__ = [
    "User",
    "Video",
    "SecurityAuditEvent",
]
