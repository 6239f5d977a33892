# API v1 module
from app.api.v1 import alerts

__all__ = [
    "alerts",
]
