""" Content hashing and naming of template revisions.
"""

import hashlib
import json

# Alphabet without vowels and confusable characters, as used for
# generated Kubernetes names.
SAFE_ALPHANUMS = "bcdfghjklmnpqrstvwxz2456789"

MAX_NAME_PREFIX_LEN = 223


def canonical_json(obj):
    """ Serialize with sorted keys and compact separators.

    Two documents with the same content always produce the same string.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def safe_encode_string(s):
    return "".join(SAFE_ALPHANUMS[b % len(SAFE_ALPHANUMS)] for b in s.encode())


def hash_revision_data(data, collision_count=0):
    """ Hash revision content together with the collision counter.

    The first 32 bits of the SHA-256 digest are rendered in decimal and
    safe-encoded, which keeps names short.

    Args:
        data: Revision content (JSON-able document or raw bytes)
        collision_count: Counter mixed in to derive a fresh name after a collision
    """
    raw = data if isinstance(data, bytes) else canonical_json(data).encode()
    digest = hashlib.sha256(raw)
    if collision_count is not None:
        digest.update(str(collision_count).encode())
    h = int.from_bytes(digest.digest()[:4], "big")
    return safe_encode_string(str(h))


def revision_name(prefix, hash_):
    """ Name a revision ``<prefix>-<hash>``, keeping it a valid object name.
    """
    if len(prefix) > MAX_NAME_PREFIX_LEN:
        prefix = prefix[:MAX_NAME_PREFIX_LEN]
    return f"{prefix}-{hash_}"
