"""
Materialized path encoding.

A category path lists every ancestor id followed by the category's own id,
wrapped in slashes: ``/1/3/5/``. A root's path is ``/<id>/``.
"""
from typing import Iterable, List, Optional

from catalog.exceptions import CorruptPathError

SEPARATOR = "/"


def encode(ancestor_path: Optional[str], self_id: int) -> str:
    """Append ``self_id`` to the parent's path (``None`` for a root)."""
    if ancestor_path is None:
        return f"{SEPARATOR}{int(self_id)}{SEPARATOR}"
    decode(ancestor_path)
    return f"{ancestor_path}{int(self_id)}{SEPARATOR}"


def encode_ids(ids: Iterable[int]) -> str:
    ids = [int(i) for i in ids]
    if not ids:
        raise CorruptPathError(None, "Cannot encode an empty path")
    return SEPARATOR + SEPARATOR.join(str(i) for i in ids) + SEPARATOR


def decode(path: Optional[str]) -> List[int]:
    """
    Split a path into its ordered ids, root first, self last.

    Raises:
        CorruptPathError: missing slashes, non-numeric segment, or no ids at all
    """
    if not isinstance(path, str) or not path.startswith(SEPARATOR) or not path.endswith(SEPARATOR):
        raise CorruptPathError(path)

    segments = [token for token in path.split(SEPARATOR) if token]
    if not segments or not all(token.isdigit() for token in segments):
        raise CorruptPathError(path)

    return [int(token) for token in segments]


def depth_of(path: str) -> int:
    return len(decode(path)) - 1


def ancestor_ids(path: str) -> List[int]:
    """Ids above the node, root first."""
    return decode(path)[:-1]


def root_id(path: str) -> int:
    return decode(path)[0]


def is_well_formed(path: Optional[str]) -> bool:
    try:
        decode(path)
    except CorruptPathError:
        return False
    return True


def verify(path: Optional[str], self_id: int) -> List[int]:
    """Decode ``path`` and check that it ends with ``self_id``."""
    ids = decode(path)
    if ids[-1] != self_id or len(set(ids)) != len(ids):
        raise CorruptPathError(path, f"Path {path!r} does not describe category {self_id}")
    return ids


def contains(path: str, node_id: int) -> bool:
    """True if ``node_id`` appears anywhere in ``path`` (ancestor or self)."""
    return node_id in decode(path)


def is_descendant(candidate_path: str, ancestor_path: str) -> bool:
    """Strict prefix check: a node is not its own descendant."""
    return candidate_path != ancestor_path and candidate_path.startswith(ancestor_path)


def rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    """Swap the ``old_prefix`` of ``path`` for ``new_prefix``, keeping the suffix."""
    if not path.startswith(old_prefix):
        raise CorruptPathError(path, f"Path {path!r} is not inside subtree {old_prefix!r}")
    return new_prefix + path[len(old_prefix):]


def depth_for_parent(parent_depth: Optional[int]) -> int:
    return 0 if parent_depth is None else parent_depth + 1
