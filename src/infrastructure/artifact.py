import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import IO, List, Optional, Set, Union

from src.domain.exceptions import DuplicatePluginNameException
from src.domain.models import PluginEntry

logger = logging.getLogger(__name__)

HEADER = "# Generated by plugin-pinner. Do not edit!\n"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("${", "\\${")
    return f'"{escaped}"'


def _attribute_name(name: str) -> str:
    # Nix identifiers may not start with a digit and only allow [A-Za-z0-9_'-].
    if name[0].isalpha() or name[0] == "_":
        if all(c.isalnum() or c in "_'-" for c in name):
            return name
    return _quote(name)


def render_entry(entry: PluginEntry) -> str:
    return (
        f"  {_attribute_name(entry.name)} = {{\n"
        f"    owner = {_quote(entry.owner)};\n"
        f"    repo = {_quote(entry.repo)};\n"
        f"    version = {_quote(entry.version)};\n"
        f"    sha256 = {_quote(entry.sha256)};\n"
        f"  }};\n"
    )


class GeneratedArtifact:
    """
    Rewrites the generated file as a single transaction.

    On entry the current file is copied to a backup next to it and a staging
    file is opened. ``append`` writes records to the staging file. A clean exit
    moves the staging file over the artifact; any exception (including
    KeyboardInterrupt and task cancellation) restores the backup instead, so the
    artifact is either fully regenerated or byte-identical to before the run.
    Backup and staging files are removed on every exit path.
    """

    def __init__(self, path: Union[str, Path]):
        # A symlinked artifact is rewritten through the link, not replaced by a file.
        self.path = Path(path).resolve()
        self.entries: List[PluginEntry] = []
        self._names: Set[str] = set()
        self._existed = False
        self._backup_path: Optional[Path] = None
        self._staging_path: Optional[Path] = None
        self._staging: Optional[IO[str]] = None

    def _scratch_file(self, suffix: str) -> Path:
        fd, name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=suffix, dir=self.path.parent)
        os.close(fd)
        return Path(name)

    def __enter__(self) -> "GeneratedArtifact":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._existed = self.path.exists()
        try:
            if self._existed:
                self._backup_path = self._scratch_file(".bak")
                shutil.copy2(self.path, self._backup_path)
                logger.debug(f"Backed up {self.path} to {self._backup_path}.")

            self._staging_path = self._scratch_file(".tmp")
            self._staging = open(self._staging_path, "w", encoding="utf-8", newline="\n")
            self._staging.write(HEADER + "{\n")
        except BaseException:
            self._cleanup()
            raise
        return self

    def append(self, entry: PluginEntry) -> None:
        """
        Writes one record, keeping processing order.

        Raises:
            DuplicatePluginNameException: If the name was already written in this run.
        """
        if self._staging is None:
            raise RuntimeError("GeneratedArtifact.append called outside of its context.")
        if entry.name in self._names:
            raise DuplicatePluginNameException(entry.name)

        self._staging.write(render_entry(entry))
        self._staging.flush()
        self._names.add(entry.name)
        self.entries.append(entry)

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                self._commit()
            else:
                self._restore()
        finally:
            self._cleanup()
        return False

    def _commit(self) -> None:
        self._staging.write("}\n")
        self._staging.close()
        if self._existed:
            shutil.copymode(self._backup_path, self._staging_path)
        else:
            # mkstemp creates 0600 files.
            os.chmod(self._staging_path, 0o644)
        os.replace(self._staging_path, self.path)
        self._staging_path = None
        logger.info(f"Wrote {len(self.entries)} entries to {self.path}.")

    def _restore(self) -> None:
        if self._existed:
            os.replace(self._backup_path, self.path)
            self._backup_path = None
            logger.warning(f"Restored {self.path} to its state before the run.")

    def _cleanup(self) -> None:
        if self._staging is not None and not self._staging.closed:
            self._staging.close()
        for scratch in (self._staging_path, self._backup_path):
            if scratch is not None and scratch.exists():
                scratch.unlink()
        self._staging_path = None
        self._backup_path = None
        self._staging = None
