import sys
import unittest
from pathlib import Path


def _add_sysup_path():
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


_add_sysup_path()

from conflicts.parser import extract_packages, has_file_conflict, required_libraries  # noqa: E402

ICU_BREAKS = ":: installing icu (74.1-1) breaks dependency 'libicuuc.so=73-64' required by libxml2"


class ExtractPackagesTests(unittest.TestCase):
    def test_known_phrasings(self):
        cases = [
            ("installing breaks", ICU_BREAKS, ["libxml2"]),
            (
                "removing breaks",
                ":: removing openssl-1.1 breaks dependency 'openssl-1.1' required by python2",
                ["python2"],
            ),
            (
                "unsatisfied dependency",
                "error: failed to prepare transaction (could not satisfy dependencies)\n"
                ":: unable to satisfy dependency 'libfoo.so=2' required by Bar-Utils",
                ["bar-utils"],
            ),
            ("requires", ":: python-foo: requires python<3.12", ["python-foo"]),
            ("trailing punctuation", "'libbar.so' required by qt5-base.", ["qt5-base"]),
            ("no conflict", "error: failed retrieving file 'core.db' from mirror", []),
            ("empty", "", []),
        ]
        for label, text, expected in cases:
            with self.subTest(label):
                self.assertEqual(extract_packages(text), expected)

    def test_results_are_sorted_and_deduplicated(self):
        text = "\n".join([
            ICU_BREAKS,
            ":: installing icu (74.1-1) breaks dependency 'libicui18n.so=73-64' required by libxml2",
            ":: unable to satisfy dependency 'libicuuc.so=73' required by boost-libs",
        ])
        self.assertEqual(extract_packages(text), ["boost-libs", "libxml2"])

    def test_names_must_be_valid_package_names(self):
        self.assertEqual(extract_packages("required by -oops"), [])


class RequiredLibrariesTests(unittest.TestCase):
    def test_quoted_dependency_before_required_by(self):
        self.assertEqual(required_libraries(ICU_BREAKS, "libxml2"), ["libicuuc.so=73-64"])

    def test_requires_phrasing(self):
        self.assertEqual(required_libraries(":: python-foo: requires python<3.12", "python-foo"), ["python<3.12"])

    def test_prefix_of_other_package_does_not_match(self):
        text = ":: unable to satisfy dependency 'libfoo.so' required by libxml2-legacy"
        self.assertEqual(required_libraries(text, "libxml2"), [])


class FileConflictTests(unittest.TestCase):
    def test_detects_existing_files(self):
        text = "error: failed to commit transaction (conflicting files)\nnodejs: /usr/bin/node exists in filesystem"
        self.assertTrue(has_file_conflict(text))
        self.assertFalse(has_file_conflict(ICU_BREAKS))


if __name__ == "__main__":
    unittest.main()
