import tempfile
import unittest
from pathlib import Path

from pipeline.errors import OverrideError
from pipeline.models import MaterializedSource
from pipeline.override import apply_override

MANIFEST = """\
[package]
name = "mmtk_jikesrvm"
version = "0.1.0"

[dependencies]
libc = "0.2"
# Use a local core for development:
# mmtk = { path = "../repos/mmtk-core" }
mmtk = { git = "https://github.com/mmtk/mmtk-core.git", rev = "1a2b3c", features = ["x"] } # pinned
lazy_static = "1.1"

[features]
default = []
mmtk = []
"""


class TestApplyOverride(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        root = Path(self._td.name)
        self.binding_dir = root / "binding"
        self.core_dir = root / "core"
        (self.binding_dir / "mmtk").mkdir(parents=True)
        self.core_dir.mkdir()
        self.manifest = self.binding_dir / "mmtk" / "Cargo.toml"
        self.binding = MaterializedSource(slot="binding", path=self.binding_dir)
        self.core = MaterializedSource(slot="core", path=self.core_dir)

    def tearDown(self) -> None:
        self._td.cleanup()

    def _write(self, text: str, newline: str = "\n") -> None:
        with self.manifest.open("w", encoding="utf-8", newline="") as f:
            f.write(text.replace("\n", newline))

    def _read(self) -> str:
        with self.manifest.open("r", encoding="utf-8", newline="") as f:
            return f.read()

    def test_rewrites_only_the_dependency_line(self) -> None:
        self._write(MANIFEST)
        patch = apply_override(self.binding, self.core)

        core = str(self.core_dir.resolve())
        expected_line = f'mmtk = {{ path = "{core}", features = ["x"] }} # pinned'
        self.assertTrue(patch.changed)
        self.assertEqual(expected_line, patch.patched_line)

        before = MANIFEST.splitlines()
        after = self._read().splitlines()
        self.assertEqual(len(before), len(after))
        diff = [(a, b) for a, b in zip(before, after) if a != b]
        self.assertEqual(1, len(diff))
        self.assertEqual(expected_line, diff[0][1])

    def test_idempotent(self) -> None:
        self._write(MANIFEST)
        apply_override(self.binding, self.core)
        once = self._read()
        second = apply_override(self.binding, self.core)
        self.assertFalse(second.changed)
        self.assertEqual(once, self._read())

    def test_version_string_and_crlf_preserved(self) -> None:
        self._write('[dependencies]\nmmtk = "0.1"\n', newline="\r\n")
        apply_override(self.binding, self.core)
        text = self._read()
        self.assertIn(f'mmtk = {{ path = "{self.core_dir.resolve()}" }}\r\n', text)
        self.assertTrue(text.startswith("[dependencies]\r\n"))

    def test_missing_manifest(self) -> None:
        with self.assertRaises(OverrideError):
            apply_override(self.binding, self.core)

    def test_missing_dependency(self) -> None:
        self._write('[dependencies]\nlibc = "0.2"\n\n[features]\nmmtk = []\n')
        with self.assertRaises(OverrideError):
            apply_override(self.binding, self.core)

    def test_duplicate_dependency(self) -> None:
        self._write('[dependencies]\nmmtk = "0.1"\nmmtk = "0.2"\n')
        with self.assertRaises(OverrideError):
            apply_override(self.binding, self.core)

    def test_table_form_rejected(self) -> None:
        self._write('[dependencies.mmtk]\ngit = "https://example.invalid/core.git"\n')
        with self.assertRaises(OverrideError):
            apply_override(self.binding, self.core)

    def test_undecodable_manifest(self) -> None:
        self.manifest.write_bytes(b'[dependencies]\n# J\xfcrgen\nmmtk = "0.1"\n')
        with self.assertRaises(OverrideError) as cm:
            apply_override(self.binding, self.core)
        self.assertIn("Cannot read", str(cm.exception))
        self.assertEqual(b'[dependencies]\n# J\xfcrgen\nmmtk = "0.1"\n', self.manifest.read_bytes())

    def test_custom_manifest_and_dependency(self) -> None:
        (self.binding_dir / "Cargo.toml").write_text('[dependencies]\ncore-lib = "1"\n', encoding="utf-8")
        patch = apply_override(self.binding, self.core, manifest="Cargo.toml", dependency="core-lib")
        self.assertTrue(patch.patched_line.startswith("core-lib = { path = "))


if __name__ == "__main__":
    unittest.main()
