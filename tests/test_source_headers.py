"""License headers must not point readers at files that are not in the tree."""

from __future__ import annotations

import re
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
# "see FOO" / "see FOO.md" in a leading comment block
FILE_REFERENCE = re.compile(r"\bsee ([A-Z][A-Z0-9_]+(?:\.\w+)?)\b")


def _sources() -> list[Path]:
    return sorted((REPO_ROOT / "nookd").rglob("*.py"))


def _header(path: Path) -> list[str]:
    lines = []
    for line in path.read_text().splitlines():
        if not line.startswith("#"):
            break
        lines.append(line)
    return lines


def test_headers_only_reference_files_in_the_tree() -> None:
    dangling = []
    for path in _sources():
        for line in _header(path):
            for name in FILE_REFERENCE.findall(line):
                if not (REPO_ROOT / name).exists():
                    dangling.append(f"{path.relative_to(REPO_ROOT)}: {name}")
    assert not dangling, f"Header references to missing files: {dangling}"
