"""
Content addressing for release tarballs.

The digest is the one ``nix-prefetch-url --unpack`` prints: the tarball is
unpacked, its single top-level directory is serialized as a Nix archive (NAR),
and the SHA-256 of that serialization is written in Nix's base-32 alphabet.
Unpacking happens in memory; nothing from the archive touches the disk.
"""
import hashlib
import io
import logging
import struct
import tarfile
from typing import Callable, Dict, List, NamedTuple, Union

from src.domain.exceptions import ArchiveException

logger = logging.getLogger(__name__)

NAR_MAGIC = b"nix-archive-1"
NIX_BASE32_ALPHABET = "0123456789abcdfghijklmnpqrsvwxyz"


class RegularFile(NamedTuple):
    contents: bytes
    executable: bool = False


class Symlink(NamedTuple):
    target: str


# A directory maps entry names to child nodes.
Node = Union[Dict[str, "Node"], RegularFile, Symlink]


def to_nix_base32(digest: bytes) -> str:
    """Encodes bytes the way ``nix hash to-base32`` does (most significant chunk first)."""
    length = (len(digest) * 8 - 1) // 5 + 1
    chars: List[str] = []
    for n in range(length - 1, -1, -1):
        bit = n * 5
        i, j = divmod(bit, 8)
        value = digest[i] >> j
        if i + 1 < len(digest):
            value |= digest[i + 1] << (8 - j)
        chars.append(NIX_BASE32_ALPHABET[value & 0x1F])
    return "".join(chars)


def _write_str(write: Callable[[bytes], object], data: bytes) -> None:
    write(struct.pack("<Q", len(data)))
    write(data)
    write(b"\0" * (-len(data) % 8))


def _serialise(write: Callable[[bytes], object], node: Node) -> None:
    _write_str(write, b"(")
    if isinstance(node, RegularFile):
        _write_str(write, b"type")
        _write_str(write, b"regular")
        if node.executable:
            _write_str(write, b"executable")
            _write_str(write, b"")
        _write_str(write, b"contents")
        _write_str(write, node.contents)
    elif isinstance(node, Symlink):
        _write_str(write, b"type")
        _write_str(write, b"symlink")
        _write_str(write, b"target")
        _write_str(write, node.target.encode("utf-8"))
    else:
        _write_str(write, b"type")
        _write_str(write, b"directory")
        for name in sorted(node, key=lambda entry: entry.encode("utf-8")):
            _write_str(write, b"entry")
            _write_str(write, b"(")
            _write_str(write, b"name")
            _write_str(write, name.encode("utf-8"))
            _write_str(write, b"node")
            _serialise(write, node[name])
            _write_str(write, b")")
    _write_str(write, b")")


def nar_serialise(node: Node) -> bytes:
    buffer = io.BytesIO()
    _write_str(buffer.write, NAR_MAGIC)
    _serialise(buffer.write, node)
    return buffer.getvalue()


def nar_hash(node: Node) -> str:
    hasher = hashlib.sha256()
    _write_str(hasher.update, NAR_MAGIC)
    _serialise(hasher.update, node)
    return to_nix_base32(hasher.digest())


def _member_parts(name: str) -> List[str]:
    """Splits a tar member name, rejecting anything that would escape the tree."""
    if name.startswith("/"):
        raise ArchiveException(f"Absolute path in archive: {name}")
    parts = [part for part in name.split("/") if part not in ("", ".")]
    if ".." in parts:
        raise ArchiveException(f"Path traversal in archive: {name}")
    return parts


def _directory(root: Dict[str, Node], parts: List[str], name: str) -> Dict[str, Node]:
    current = root
    for part in parts:
        child = current.setdefault(part, {})
        if not isinstance(child, dict):
            raise ArchiveException(f"Archive entry {name} is below a non-directory")
        current = child
    return current


def unpack_tree(data: bytes) -> Dict[str, Node]:
    """
    Unpacks a (possibly compressed) tarball into an in-memory tree.

    Hard links become copies of their target's contents. Device files and
    FIFOs have no NAR representation and are skipped.
    """
    root: Dict[str, Node] = {}
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            for member in tar.getmembers():
                parts = _member_parts(member.name)
                if not parts:
                    continue

                if member.isdir():
                    _directory(root, parts, member.name)
                    continue

                parent = _directory(root, parts[:-1], member.name)
                if isinstance(parent.get(parts[-1]), dict):
                    raise ArchiveException(f"Archive entry {member.name} replaces a directory")

                if member.issym():
                    parent[parts[-1]] = Symlink(member.linkname)
                elif member.isfile() or member.islnk():
                    extracted = tar.extractfile(member)
                    if extracted is None:
                        raise ArchiveException(f"Cannot read archive entry {member.name}")
                    with extracted:
                        parent[parts[-1]] = RegularFile(extracted.read(), bool(member.mode & 0o100))
                else:
                    logger.debug(f"Skipping special archive entry {member.name}.")
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ArchiveException(f"Cannot unpack archive: {e}") from e

    return root


def digest_tarball(data: bytes) -> str:
    """
    Hashes a release tarball.

    Args:
        data (bytes): The downloaded ``.tar.gz`` bytes.

    Returns:
        str: The 52-character Nix base-32 SHA-256 of the unpacked top-level directory.

    Raises:
        ArchiveException: If the archive is unreadable or does not hold exactly one top-level entry.
    """
    tree = unpack_tree(data)
    if len(tree) != 1:
        raise ArchiveException(f"Archive has {len(tree)} top-level entries, expected exactly one.")

    (top,) = tree.values()
    return nar_hash(top)
