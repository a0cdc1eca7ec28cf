"""Read and write permission rules for notes.

Pure functions with no I/O. Sharing grants read access only; the owner is
the sole writer.
"""
from quillnote_mcp.models.schema import Note, Principal, Visibility


def can_read(principal: Principal, note: Note) -> bool:
    """Owner, anyone for a public note, or a listed collaborator."""
    if principal.id == note.owner_id:
        return True
    if note.is_public:
        return True
    return principal.email.lower() in (email.lower() for email in note.shared_with)


def can_write(principal: Principal, note: Note) -> bool:
    """Only the owner may update, delete or re-share a note."""
    return principal.id == note.owner_id


def classify(note: Note) -> Visibility:
    """Public wins over shared; a note with neither is private."""
    return note.visibility
