#!/usr/bin/env python3
"""Gateway isolation validation script.

Enforces the architectural rule that core/, types/, and utils/ directories
stay transport-agnostic. Gateway SDK imports and references to specific push
transports belong under plugins/.

This script scans for:
- Imports of gateway SDKs (firebase_admin, google.cloud, ...)
- Direct imports from push_dispatch.plugins.<gateway> packages
- Hardcoded transport names in code, comments, or docstrings

Exit codes:
    0: No violations found (clean)
    1: Violations detected (architectural rule broken)
"""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Final

# ANSI color codes for terminal output
RED: Final[str] = "\033[91m"
GREEN: Final[str] = "\033[92m"
YELLOW: Final[str] = "\033[93m"
RESET: Final[str] = "\033[0m"

# Directories that must remain transport-agnostic
PROTECTED_DIRS: Final[tuple[str, ...]] = ("core", "types", "utils")

SDK_IMPORT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^\s*(?:from|import)\s+(?:firebase_admin|google\.cloud|google\.auth|apns2|pyfcm)\b"
)
PLUGIN_IMPORT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"from\s+push_dispatch\.plugins\.(?!discovery\b|loader\b)\w+"
)
TRANSPORT_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"\b(?:firebase|fcm|apns)\b", re.IGNORECASE)


def check_file(file_path: Path) -> list[tuple[int, str]]:
    """Return (line_number, description) for every violation in one file."""
    violations: list[tuple[int, str]] = []

    try:
        lines = file_path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        print(f"{YELLOW}Warning: Could not read {file_path}: {e}{RESET}", file=sys.stderr)
        return violations

    for line_num, line in enumerate(lines, start=1):
        if SDK_IMPORT_PATTERN.search(line):
            violations.append((line_num, f"Gateway SDK import: {line.strip()}"))
        elif PLUGIN_IMPORT_PATTERN.search(line):
            violations.append((line_num, f"Direct import from gateway plugin: {line.strip()}"))
        elif TRANSPORT_NAME_PATTERN.search(line):
            violations.append((line_num, f"Hardcoded transport reference: {line.strip()}"))

    return violations


def scan_directory(base_path: Path, protected_dir: str) -> dict[Path, list[tuple[int, str]]]:
    """Scan one protected directory recursively."""
    dir_path = base_path / protected_dir
    if not dir_path.exists():
        print(f"{YELLOW}Warning: Protected directory {dir_path} does not exist{RESET}", file=sys.stderr)
        return {}

    violations_by_file: dict[Path, list[tuple[int, str]]] = {}
    for py_file in dir_path.rglob("*.py"):
        if "__pycache__" in py_file.parts:
            continue
        file_violations = check_file(py_file)
        if file_violations:
            violations_by_file[py_file] = file_violations
    return violations_by_file


def main() -> int:
    """Run the isolation check; returns the process exit code."""
    project_root = Path(__file__).parent.parent
    src_path = project_root / "src" / "push_dispatch"

    if not src_path.exists():
        print(f"{RED}Error: Could not find src/push_dispatch directory{RESET}", file=sys.stderr)
        return 1

    print("Checking gateway isolation in core, types, and utils modules...")
    print(f"Scanning: {src_path}\n")

    all_violations: dict[Path, list[tuple[int, str]]] = {}
    for protected_dir in PROTECTED_DIRS:
        all_violations.update(scan_directory(src_path, protected_dir))

    if not all_violations:
        print(f"{GREEN}✓ No gateway isolation violations found{RESET}")
        return 0

    total_violations = sum(len(v) for v in all_violations.values())
    print(f"{RED}✗ Found {total_violations} gateway isolation violations:{RESET}\n")
    for file_path, violations in sorted(all_violations.items()):
        try:
            rel_path = file_path.relative_to(project_root)
        except ValueError:
            rel_path = file_path
        print(f"{RED}{rel_path}{RESET}")
        for line_num, description in violations:
            print(f"  {line_num}: {description}")
        print()

    print(f"{RED}Gateway isolation check failed!{RESET}")
    print("\nMove transport-specific code to plugins/<gateway>/.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
