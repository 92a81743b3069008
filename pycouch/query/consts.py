from typing import Final

ID: Final[str] = "_id"
"""The document identifier field."""

REV: Final[str] = "_rev"
"""The document revision field."""

CONFLICTS: Final[str] = "_conflicts"
"""Conflicting revisions, present when requested."""

ATTACHMENTS: Final[str] = "_attachments"
"""Attachment stubs keyed by attachment name."""

AND: Final[str] = "$and"
OR: Final[str] = "$or"
NOT: Final[str] = "$not"
NOR: Final[str] = "$nor"

JSON_TYPES: Final[frozenset[str]] = frozenset({"null", "boolean", "number", "string", "array", "object"})
"""Accepted operands of the ``$type`` operator."""
