from .models import CouchAttachment, CouchDocument

__all__ = [
    "CouchDocument",
    "CouchAttachment",
]
