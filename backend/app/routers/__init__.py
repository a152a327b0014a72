from app.routers import auth, health, uploads, videos

__all__ = [
    "auth",
    "health",
    "uploads",
    "videos",
]
