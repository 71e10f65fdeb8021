import hashlib


def normalize_email(email: str) -> str:
    return email.strip().lower()


def invitee_key_for_email(email: str) -> str:
    """
    Build the stable invitee key for an external person.

    Format: ``e:`` followed by the first 16 hex chars of sha256(lowercased email).
    The same email always yields the same key, so required-people policies can be
    declared before invites exist.
    """
    digest = hashlib.sha256(normalize_email(email).encode("utf-8")).hexdigest()
    return f"e:{digest[:16]}"
