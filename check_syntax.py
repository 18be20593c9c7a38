#!/usr/bin/env python3
"""Build gate: compile every application module and test file.
Exits non-zero if any of them has a syntax error.
"""
import sys
import py_compile
from pathlib import Path
from typing import List

MODULES = [
    "main.py",
    "config.py",
    "db.py",
    "auth.py",
    "ai.py",
    "overlay.py",
    "pdf_tools.py",
    "emails.py",
    "billing.py",
    "translations.py",
]


def check_file(filepath: Path) -> bool:
    try:
        py_compile.compile(str(filepath), doraise=True)
        print(f"✓ {filepath.name} - OK")
        return True
    except py_compile.PyCompileError as e:
        print(f"✗ {filepath.name} - ERROR: {e}", file=sys.stderr)
        return False


def collect_files(base_dir: Path) -> List[Path]:
    files = [base_dir / name for name in MODULES]
    files.extend(sorted((base_dir / "tests").glob("*.py")))
    return files


def run(base_dir: Path) -> bool:
    """Compile everything; True when all files exist and compile."""
    all_ok = True
    for filepath in collect_files(base_dir):
        if not filepath.exists():
            print(f"⚠ {filepath.name} - NOT FOUND", file=sys.stderr)
            all_ok = False
        elif not check_file(filepath):
            all_ok = False
    return all_ok


def main():
    if not run(Path(__file__).parent):
        print("\n✗ Syntax check FAILED. Fix errors before deploying.", file=sys.stderr)
        sys.exit(1)
    print("\n✓ All syntax checks passed.")
    sys.exit(0)


if __name__ == "__main__":
    main()
