"""
parser.py - Extract conflicting package names from package-manager errors.

Raw error text in, sorted de-duplicated package identifiers out. Every
phrasing we understand is listed in PATTERNS; each pattern's first group
captures the package that holds the conflicting requirement.
"""

from __future__ import annotations

import re

# pacman package names: lowercase alphanumerics and @._+- , not starting with - or .
PACKAGE_NAME = re.compile(r"^[a-z0-9@_+][a-z0-9@._+-]*$")

_NAME = r"([A-Za-z0-9@_+][A-Za-z0-9@._+-]*)"

PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # :: installing icu (74.1-1) breaks dependency 'libicuuc.so=73-64' required by libxml2
    ("installing-breaks", re.compile(rf"::\s+installing\s+\S+.*?breaks dependency\s+'[^']*'\s+required by\s+{_NAME}")),
    # :: removing openssl-1.1 breaks dependency 'openssl-1.1' required by python2
    ("removing-breaks", re.compile(rf"::\s+removing\s+\S+.*?breaks dependency\s+'[^']*'\s+required by\s+{_NAME}")),
    # :: unable to satisfy dependency 'libfoo.so=2' required by bar
    ("required-by", re.compile(rf"required by\s+{_NAME}")),
    # :: python-foo: requires python<3.12
    ("requires", re.compile(rf"::\s+{_NAME}:\s+requires\s+")),
]

_QUOTED = re.compile(r"'([^']+)'")
_FILE_CONFLICT = "exists in filesystem"
_TRAILING = ":,.'\""


def _clean(candidate: str) -> str | None:
    name = candidate.strip().rstrip(_TRAILING).lower()
    if PACKAGE_NAME.match(name):
        return name
    return None


def extract_packages(text: str) -> list[str]:
    """Return every package named as holding a broken requirement."""
    found: set[str] = set()
    for _label, pattern in PATTERNS:
        for match in pattern.finditer(text):
            name = _clean(match.group(1))
            if name:
                found.add(name)
    return sorted(found)


def required_libraries(text: str, package: str) -> list[str]:
    """Libraries/dependencies the error text names next to ``package``."""
    required_by = re.compile(rf"required by\s+{re.escape(package)}(?![A-Za-z0-9@._+-])", re.I)
    requires = re.compile(rf"::\s+{re.escape(package)}:\s+requires\s+(\S+)", re.I)

    found: set[str] = set()
    for line in text.splitlines():
        match = required_by.search(line)
        if match:
            found.update(_QUOTED.findall(line[:match.start()])[-1:])
        match = requires.search(line)
        if match:
            found.add(match.group(1).strip(_TRAILING))
    return sorted(found)


def has_file_conflict(text: str) -> bool:
    """True if the error reports files that already exist on disk."""
    return _FILE_CONFLICT in text
