"""
Shared fixtures for asm-inspector tests.
"""

import os
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Tuple
from unittest.mock import MagicMock

import pytest

from src.asm_inspector.cli_config import reset_config
from src.asm_inspector.error_handling import setup_error_handling
from src.asm_inspector.models import ModuleIdentity, ModuleRecord, DeclaredDependency
from src.asm_inspector.reader import COM_DESCRIPTOR_INDEX
from src.asm_inspector.version import AssemblyVersion


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep config files, env vars and global singletons out of each test."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for key in list(os.environ):
        if key.startswith("ASM_INSPECTOR_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    setup_error_handling()
    yield
    reset_config()


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    directory = tmp_path / "work"
    directory.mkdir()
    return directory


def make_identity(
    name: str, version: str = "1.0.0.0", token: bytes = b"", culture: str = ""
) -> ModuleIdentity:
    return ModuleIdentity(
        name=name,
        version=AssemblyVersion.parse(version),
        public_key_token=token,
        culture=culture,
    )


def make_record(name: str, version: str = "1.0.0.0", deps: List[Tuple[str, str]] = (), **kwargs) -> ModuleRecord:
    return ModuleRecord(
        identity=make_identity(name, version, **kwargs),
        dependencies=tuple(DeclaredDependency(n, v) for n, v in deps),
    )


@pytest.fixture
def identity_factory():
    return make_identity


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def diamond_records() -> List[ModuleRecord]:
    """A and B want Lib 1.0, C wants Lib 2.0, Lib 1.5 is deployed."""
    return [
        make_record("A", deps=[("Lib", "1.0.0.0")]),
        make_record("B", deps=[("Lib", "1.0.0.0")]),
        make_record("C", deps=[("Lib", "2.0.0.0")]),
        make_record("Lib", "1.5.0.0"),
    ]


def _version_fields(version: str) -> Dict[str, int]:
    major, minor, build, revision = (int(p) for p in version.split("."))
    return {
        "MajorVersion": major,
        "MinorVersion": minor,
        "BuildNumber": build,
        "RevisionNumber": revision,
    }


def fake_dotnet_pe(
    name: str,
    version: str,
    references: List[Tuple[str, str]] = (),
    public_key: bytes = b"",
    culture: str = "",
) -> MagicMock:
    """Stand-in for a dnfile.dnPE object with Assembly and AssemblyRef tables."""
    assembly_row = SimpleNamespace(
        Name=name, PublicKey=public_key, Culture=culture, Flags=0, **_version_fields(version)
    )
    ref_rows = [
        SimpleNamespace(Name=ref_name, Culture="", Flags=0, PublicKey=b"", **_version_fields(ref_version))
        for ref_name, ref_version in references
    ]
    tables = SimpleNamespace(
        Assembly=SimpleNamespace(rows=[assembly_row]),
        AssemblyRef=SimpleNamespace(rows=ref_rows),
    )
    pe = MagicMock()
    pe.net = SimpleNamespace(mdtables=tables)
    return pe


def fake_native_pe(clr_header_address: int = 0) -> MagicMock:
    """
    dnPE object without parsed CLR metadata. A non-zero ``clr_header_address``
    mimics a managed file whose CLR header dnfile failed to parse.
    """
    directories = [SimpleNamespace(VirtualAddress=0, Size=0) for _ in range(16)]
    directories[COM_DESCRIPTOR_INDEX] = SimpleNamespace(
        VirtualAddress=clr_header_address, Size=72 if clr_header_address else 0
    )
    pe = MagicMock()
    pe.net = None
    pe.OPTIONAL_HEADER.DATA_DIRECTORY = directories
    return pe


@pytest.fixture
def dotnet_pe_factory():
    return fake_dotnet_pe


@pytest.fixture
def native_pe_factory():
    return fake_native_pe


@pytest.fixture
def diamond_directory(temp_dir):
    """
    Directory with four placeholder module files and the fake PE objects
    dnfile should return for them.
    """
    pes = {
        "A.dll": fake_dotnet_pe("A", "1.0.0.0", [("Lib", "1.0.0.0"), ("System.Core", "4.0.0.0")]),
        "B.dll": fake_dotnet_pe("B", "1.0.0.0", [("Lib", "1.0.0.0"), ("System.Core", "3.5.0.0")]),
        "C.exe": fake_dotnet_pe("C", "1.0.0.0", [("Lib", "2.0.0.0")]),
        "Lib.dll": fake_dotnet_pe("Lib", "1.5.0.0"),
    }
    for file_name in pes:
        (temp_dir / file_name).write_bytes(b"MZ placeholder")

    def open_pe(path: str):
        return pes[Path(path).name]

    return temp_dir, open_pe
