"""
Module metadata reader.

Locates compiled modules in a directory and reads their assembly manifest and
assembly references from the .NET metadata tables using dnfile. Each file
yields a ReadResult carrying either a ModuleRecord or a typed skip reason, so
callers decide how to aggregate failures.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, List, Optional

import dnfile
import pefile

from .cli_config import get_config
from .error_handling import log_module_load_error
from .models import DeclaredDependency, ModuleIdentity, ModuleRecord
from .structured_logging import log_module_skipped
from .version import AssemblyVersion

COM_DESCRIPTOR_INDEX = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR"]


class SkipReason(Enum):
    """Why a module file produced no record."""

    NOT_MANAGED = "not_managed"  # Native PE file, no CLR header
    NO_ASSEMBLY_MANIFEST = "no_assembly_manifest"  # Managed module without an Assembly row
    UNREADABLE = "unreadable"  # Not a PE file, I/O error or corrupt metadata
    TOO_LARGE = "too_large"


@dataclass(frozen=True)
class ReadResult:
    """Outcome of reading one module file."""

    path: Path
    record: Optional[ModuleRecord] = None
    skip_reason: Optional[SkipReason] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.record is not None

    @property
    def is_warning(self) -> bool:
        """Skips worth telling the user about; native binaries are skipped silently."""
        return self.skip_reason not in (None, SkipReason.NOT_MANAGED)


def public_key_token_from_key(public_key: bytes) -> bytes:
    """Derive the 8-byte public key token from a full public key blob."""
    if not public_key:
        return b""
    return hashlib.sha1(public_key).digest()[-8:][::-1]


def _heap_value(item: Any) -> Any:
    """Unwrap a dnfile heap item (string or blob) to its Python value."""
    if item is None:
        return None
    return getattr(item, "value", item)


def _heap_str(item: Any) -> str:
    value = _heap_value(item)
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _heap_bytes(item: Any) -> bytes:
    value = _heap_value(item)
    if not value:
        return b""
    return bytes(value)


def _table_rows(tables: Any, name: str) -> List[Any]:
    table = getattr(tables, name, None)
    if table is None:
        return []
    return list(getattr(table, "rows", []) or [])


def _row_version(row: Any) -> str:
    return ".".join(
        str(int(getattr(row, attr, 0) or 0))
        for attr in ("MajorVersion", "MinorVersion", "BuildNumber", "RevisionNumber")
    )


def _identity_from_row(row: Any, path: Path) -> ModuleIdentity:
    public_key = _heap_bytes(getattr(row, "PublicKey", None))
    return ModuleIdentity(
        name=_heap_str(row.Name),
        version=AssemblyVersion.parse(_row_version(row)),
        public_key_token=public_key_token_from_key(public_key),
        culture=_heap_str(getattr(row, "Culture", None)),
        path=str(path),
    )


def _declares_clr_header(pe: Any) -> bool:
    """Whether the PE optional header points at a CLR header, readable or not."""
    directories = getattr(getattr(pe, "OPTIONAL_HEADER", None), "DATA_DIRECTORY", None) or []
    if len(directories) <= COM_DESCRIPTOR_INDEX:
        return False
    return bool(getattr(directories[COM_DESCRIPTOR_INDEX], "VirtualAddress", 0))


def _skip(path: Path, reason: SkipReason, message: str, exception: Optional[Exception] = None) -> ReadResult:
    log_module_skipped(str(path), reason.value, message)
    if reason is not SkipReason.NOT_MANAGED:
        log_module_load_error(
            f"Failed to load assembly '{path}': {message}", str(path), exception=exception
        )
    return ReadResult(path=path, skip_reason=reason, message=message)


def read_module(path: Path) -> ReadResult:
    """
    Read one module file.

    Args:
        path: Path to a .dll or .exe file

    Returns:
        ReadResult: The module record, or the reason the file was skipped
    """
    path = Path(path)
    max_size = get_config().reader.max_file_size_bytes

    try:
        size = path.stat().st_size
    except OSError as e:
        return _skip(path, SkipReason.UNREADABLE, str(e), e)
    if size > max_size:
        return _skip(
            path, SkipReason.TOO_LARGE, f"File too large: {size} bytes (max: {max_size})"
        )

    try:
        pe = dnfile.dnPE(str(path))
    except pefile.PEFormatError as e:
        return _skip(path, SkipReason.UNREADABLE, f"Not a PE file: {e}", e)
    except OSError as e:
        return _skip(path, SkipReason.UNREADABLE, str(e), e)

    try:
        if pe.net is None or getattr(pe.net, "mdtables", None) is None:
            if _declares_clr_header(pe):
                return _skip(path, SkipReason.UNREADABLE, "Corrupt CLR header or metadata")
            return _skip(path, SkipReason.NOT_MANAGED, "No CLR metadata")

        tables = pe.net.mdtables
        assembly_rows = _table_rows(tables, "Assembly")
        if not assembly_rows:
            return _skip(path, SkipReason.NO_ASSEMBLY_MANIFEST, "Module has no assembly manifest")

        identity = _identity_from_row(assembly_rows[0], path)
        dependencies = tuple(
            DeclaredDependency(name=_heap_str(row.Name), version=_row_version(row))
            for row in _table_rows(tables, "AssemblyRef")
        )
    except (AttributeError, ValueError, IndexError) as e:
        return _skip(path, SkipReason.UNREADABLE, f"Corrupt metadata: {e}", e)
    finally:
        pe.close()

    return ReadResult(path=path, record=ModuleRecord(identity=identity, dependencies=dependencies))


def find_module_files(directory: Path) -> List[Path]:
    """Module files directly inside ``directory``, sorted by file name."""
    extensions = {ext.lower() for ext in get_config().reader.module_extensions}
    directory = Path(directory)
    files = [
        entry
        for entry in directory.iterdir()
        if entry.is_file() and entry.suffix.lower() in extensions
    ]
    return sorted(files, key=lambda p: p.name)


def _find_bin_directories(directory: Path, bin_name: str) -> List[Path]:
    candidates = [p for p in directory.rglob(bin_name) if p.is_dir() and p.name == bin_name]
    return sorted(candidates, key=lambda p: (len(p.relative_to(directory).parts), str(p)))


def locate_module_directory(directory: Path) -> Optional[Path]:
    """
    Directory that actually holds module files.

    Returns ``directory`` itself when it contains module files, otherwise the
    first build output directory (named ``bin`` by default) found beneath it
    that does, searched shallowest first. Returns None when there is none.
    """
    directory = Path(directory)
    if find_module_files(directory):
        return directory

    bin_name = get_config().reader.bin_directory_name
    for candidate in _find_bin_directories(directory, bin_name):
        if find_module_files(candidate):
            return candidate

    return None


def read_directory(directory: Path) -> Iterator[ReadResult]:
    """Read every module file of ``directory`` in file name order."""
    for path in find_module_files(directory):
        yield read_module(path)
