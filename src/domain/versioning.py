import re
from typing import Iterable, List, Optional, Tuple

TAG_REF_PREFIX = "refs/tags/"
MALFORMED_TAG_MARKER = "v."
VERSION_PREFIX = "v"

_VERSION_CHUNK = re.compile(r"(\D*)(\d*)")


def strip_ref_prefix(ref: str) -> str:
    """Turns ``refs/tags/v1.0`` into ``v1.0``. Other strings pass through."""
    if ref.startswith(TAG_REF_PREFIX):
        return ref[len(TAG_REF_PREFIX):]
    return ref


def is_malformed_tag(tag: str) -> bool:
    return MALFORMED_TAG_MARKER in tag


def _text_order(text: str) -> Tuple[int, ...]:
    # Letters sort before every other character, like GNU sort -V.
    return tuple(ord(c) if c.isalpha() else ord(c) + 0x110000 for c in text)


def version_key(tag: str) -> Tuple[Tuple[Tuple[int, ...], int], ...]:
    """
    Sort key that orders tags the way ``sort -V`` does.

    The tag is split into alternating non-digit and digit runs. Non-digit runs
    compare character by character, digit runs compare numerically, so
    ``v1.10`` sorts after ``v1.9``.
    """
    chunks = []
    for text, number in _VERSION_CHUNK.findall(tag):
        if not text and not number:
            continue
        chunks.append((_text_order(text), int(number) if number else 0))
    return tuple(chunks)


def select_latest_tag(tags: Iterable[str]) -> Optional[str]:
    """
    Drops malformed tags and returns the highest remaining one.

    Returns None when nothing qualifies.
    """
    candidates: List[str] = sorted(
        (tag for tag in tags if tag and not is_malformed_tag(tag)),
        key=lambda tag: (version_key(tag), tag),
    )
    return candidates[-1] if candidates else None


def derive_plugin_name(repo: str) -> str:
    """``nixops-aws`` -> ``aws``. Names without a dash are kept whole."""
    _, sep, rest = repo.partition("-")
    return rest if sep else repo


def strip_version_prefix(tag: str) -> str:
    """``v1.2.3`` -> ``1.2.3``."""
    if tag.startswith(VERSION_PREFIX):
        return tag[len(VERSION_PREFIX):]
    return tag
