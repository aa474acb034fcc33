"""
Integration tests for asm-inspector.
Tests module reading, directory discovery and report rendering end to end.
"""

import io
import json
from unittest.mock import patch

import pefile
from rich.console import Console

from src.asm_inspector.cli_config import reset_config
from src.asm_inspector.error_handling import get_error_handler
from src.asm_inspector.models import ResolveOptions
from src.asm_inspector.reader import (
    SkipReason,
    find_module_files,
    locate_module_directory,
    public_key_token_from_key,
    read_directory,
    read_module,
)
from src.asm_inspector.reporting import (
    ReferenceReporter,
    analysis_to_dict,
    render_binding_redirects,
)
from src.asm_inspector.resolver import analyse_modules

ECMA_PUBLIC_KEY = bytes.fromhex("00000000000000000400000000000000")


def _plain_console() -> Console:
    return Console(file=io.StringIO(), width=200, color_system=None, soft_wrap=True)


class TestModuleReader:
    """Test reading module metadata through dnfile."""

    def test_read_managed_module(self, temp_dir, dotnet_pe_factory):
        module_file = temp_dir / "Contoso.Core.dll"
        module_file.write_bytes(b"MZ")
        pe = dotnet_pe_factory(
            "Contoso.Core",
            "2.1.0.0",
            [("Lib", "1.0.0.0"), ("mscorlib", "4.0.0.0")],
            public_key=ECMA_PUBLIC_KEY,
            culture="en-US",
        )

        with patch("src.asm_inspector.reader.dnfile.dnPE", return_value=pe):
            result = read_module(module_file)

        assert result.ok
        identity = result.record.identity
        assert identity.name == "Contoso.Core"
        assert str(identity.version) == "2.1.0.0"
        assert identity.public_key_token.hex() == "b77a5c561934e089"
        assert identity.culture == "en-US"
        assert [(d.name, d.version) for d in result.record.dependencies] == [
            ("Lib", "1.0.0.0"),
            ("mscorlib", "4.0.0.0"),
        ]
        pe.close.assert_called_once()

    def test_public_key_token_derivation(self):
        assert public_key_token_from_key(ECMA_PUBLIC_KEY).hex() == "b77a5c561934e089"
        assert public_key_token_from_key(b"") == b""

    def test_native_module_is_skipped_quietly(self, temp_dir, native_pe_factory):
        module_file = temp_dir / "native.dll"
        module_file.write_bytes(b"MZ")
        with patch("src.asm_inspector.reader.dnfile.dnPE", return_value=native_pe_factory()):
            result = read_module(module_file)

        assert not result.ok
        assert result.skip_reason is SkipReason.NOT_MANAGED
        assert not result.is_warning
        assert get_error_handler().get_error_stats() == {}

    def test_corrupt_clr_header_is_reported(self, temp_dir, native_pe_factory):
        module_file = temp_dir / "broken.dll"
        module_file.write_bytes(b"MZ")
        pe = native_pe_factory(clr_header_address=0x2008)

        with patch("src.asm_inspector.reader.dnfile.dnPE", return_value=pe):
            result = read_module(module_file)

        assert result.skip_reason is SkipReason.UNREADABLE
        assert result.is_warning
        assert "CLR header" in result.message
        assert get_error_handler().get_error_stats() == {"FILESYSTEM_WARNING": 1}
        pe.close.assert_called_once()

    def test_oversized_file_is_not_opened(self, temp_dir, monkeypatch):
        monkeypatch.setenv("ASM_INSPECTOR_MAX_FILE_SIZE_MB", "1")
        reset_config()
        module_file = temp_dir / "huge.dll"
        module_file.write_bytes(b"\0" * (1024 * 1024 + 1))

        with patch("src.asm_inspector.reader.dnfile.dnPE") as mock_pe:
            result = read_module(module_file)

        mock_pe.assert_not_called()
        assert result.skip_reason is SkipReason.TOO_LARGE
        assert result.is_warning
        assert "File too large" in result.message

    def test_non_pe_file_is_reported(self, temp_dir):
        module_file = temp_dir / "readme.dll"
        module_file.write_text("not a binary")

        with patch(
            "src.asm_inspector.reader.dnfile.dnPE",
            side_effect=pefile.PEFormatError("DOS Header magic not found."),
        ):
            result = read_module(module_file)

        assert result.skip_reason is SkipReason.UNREADABLE
        assert result.is_warning
        assert "Not a PE file" in result.message

    def test_module_without_manifest(self, temp_dir, dotnet_pe_factory):
        module_file = temp_dir / "part.netmodule.dll"
        module_file.write_bytes(b"MZ")
        pe = dotnet_pe_factory("ignored", "1.0.0.0")
        pe.net.mdtables.Assembly = None

        with patch("src.asm_inspector.reader.dnfile.dnPE", return_value=pe):
            result = read_module(module_file)

        assert result.skip_reason is SkipReason.NO_ASSEMBLY_MANIFEST

    def test_missing_file_is_unreadable(self, temp_dir):
        result = read_module(temp_dir / "gone.dll")
        assert result.skip_reason is SkipReason.UNREADABLE


class TestDirectoryDiscovery:
    """Test locating module files."""

    def test_find_module_files_sorted_by_name(self, temp_dir):
        for name in ["b.dll", "A.exe", "a.dll", "notes.txt"]:
            (temp_dir / name).write_bytes(b"")
        (temp_dir / "sub.dll").mkdir()

        assert [p.name for p in find_module_files(temp_dir)] == ["A.exe", "a.dll", "b.dll"]

    def test_directory_with_modules_is_used_directly(self, temp_dir):
        (temp_dir / "A.dll").write_bytes(b"")
        assert locate_module_directory(temp_dir) == temp_dir

    def test_falls_back_to_bin_directory(self, temp_dir):
        bin_dir = temp_dir / "src" / "App" / "bin"
        bin_dir.mkdir(parents=True)
        (bin_dir / "App.exe").write_bytes(b"")
        (temp_dir / "obj").mkdir()

        assert locate_module_directory(temp_dir) == bin_dir

    def test_no_modules_anywhere(self, temp_dir):
        (temp_dir / "bin").mkdir()
        assert locate_module_directory(temp_dir) is None


class TestEndToEnd:
    """Test read -> analyse -> report."""

    def test_diamond_directory(self, diamond_directory):
        directory, open_pe = diamond_directory

        with patch("src.asm_inspector.reader.dnfile.dnPE", side_effect=open_pe):
            results = list(read_directory(directory))

        records = [r.record for r in results if r.ok]
        assert [r.identity.name for r in records] == ["A", "B", "C", "Lib"]

        result = analyse_modules(
            records, ResolveOptions(exclude_system_named=True, emit_redirects=True)
        )

        assert [r.name for r in result.reports] == ["Lib"]
        assert result.reports[0].version_order == ["1.5.0.0", "2.0.0.0", "1.0.0.0"]
        assert len(result.redirects) == 1

    def test_console_report(self, diamond_records):
        result = analyse_modules(diamond_records, ResolveOptions(emit_redirects=True))
        console = _plain_console()

        ReferenceReporter(console).print_analysis(result, "/deploy/bin")
        output = console.file.getvalue()

        assert "Check assemblies in:\n/deploy/bin\n" in output
        assert "Detailing only conflicting assembly references." in output
        assert "Reference: Lib" in output
        assert "Bin version: 1.5.0.0" in output
        assert "   1.0.0.0 by A" in output
        assert "   2.0.0.0 by C" in output
        assert "Assembly binding redirects to add to config file:" in output
        assert 'oldVersion="0.0.0.0-2.0.0.0" newVersion="1.5.0.0"' in output

    def test_all_mode_omits_conflict_banner(self, diamond_records):
        result = analyse_modules(diamond_records, ResolveOptions(include_non_conflicting=True))
        console = _plain_console()

        ReferenceReporter(console).print_analysis(result, "/deploy/bin")

        assert "Detailing only conflicting" not in console.file.getvalue()

    def test_ingestion_errors_shown_as_warnings(self, record_factory):
        result = analyse_modules([record_factory("A", deps=[("Bad", "nope")])])
        console = _plain_console()

        ReferenceReporter(console).print_analysis(result, "/deploy/bin")

        assert "A: skipped reference to Bad" in console.file.getvalue()

    def test_binding_redirect_fragment(self, diamond_records):
        result = analyse_modules(diamond_records, ResolveOptions(emit_redirects=True))

        assert render_binding_redirects(result.redirects) == (
            "  <runtime>\n"
            '    <assemblyBinding xmlns="urn:schemas-microsoft-com:asm.v1">\n'
            "      <dependentAssembly>\n"
            '        <assemblyIdentity name="Lib" publicKeyToken="null" culture="neutral" />\n'
            '        <bindingRedirect oldVersion="0.0.0.0-2.0.0.0" newVersion="1.5.0.0" />\n'
            "      </dependentAssembly>\n"
            "    </assemblyBinding>\n"
            "  </runtime>"
        )

    def test_json_document(self, diamond_records):
        result = analyse_modules(diamond_records, ResolveOptions(emit_redirects=True))

        document = json.loads(json.dumps(analysis_to_dict(result, "/deploy/bin")))

        assert document["summary"]["conflicts"] == 1
        group = document["groups"][0]
        assert group["name"] == "Lib"
        assert group["bin_version"] == "1.5.0.0"
        assert group["references"][2] == {
            "version": "2.0.0.0",
            "referenced_by": "C",
            "slot": 1,
            "marker": "red",
        }
        assert document["binding_redirects"] == [
            {
                "name": "Lib",
                "public_key_token": "null",
                "culture": "neutral",
                "old_version": "0.0.0.0-2.0.0.0",
                "new_version": "1.5.0.0",
            }
        ]
