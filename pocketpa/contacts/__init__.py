"""Contact directory and name resolution."""

from .directory import ContactDirectory, ContactRecord
from .resolver import EntityResolver, Resolution, Suggestions

__all__ = ["ContactDirectory", "ContactRecord", "EntityResolver", "Resolution", "Suggestions"]
