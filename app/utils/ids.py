from bson import ObjectId
from bson.errors import InvalidId

from app.core.errors import NotFoundError


def parse_object_id(value, label: str = "Document") -> ObjectId:
    """Convert a string id to ObjectId; malformed ids are reported as not found."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFoundError(f"{label} not found")
