#!/usr/bin/env python3
"""Gate: Security & PII check for source files.

Customer phones, JIDs and message text flow through every webhook, so
runtime code must never print them or log them raw.

Fails if:
- print( found in runtime code (src/**)
- A logger call mentions a sensitive name without going through redaction

Each logger call is inspected as a whole (up to its closing parenthesis), so
multi-line calls are checked as one unit.

Usage:
    python scripts/gate_security_pii.py [SRC_DIR]
"""

import re
import sys
from pathlib import Path

# Names that must not appear in logger calls without redaction
SENSITIVE_KEYWORDS = (
    "payload",
    "request.json",
    "phone",
    "remote_jid",
    "remotejid",
    "customer_key",
    "message.text",
    "customer_name",
)

# Pattern for print statements
PRINT_PATTERN = re.compile(r"\bprint\s*\(")

# Pattern for logger calls: logger.info/debug/warning/error/critical(...)
LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

# Patterns that indicate proper redaction usage
REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
    "hash_key",
)


def _call_text(content: str, start: int) -> str:
    """Return the source of the call whose opening parenthesis ends at ``start``."""
    depth = 1
    i = start
    while i < len(content) and depth:
        ch = content[i]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        i += 1
    return content[start:i]


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    errors = []
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []  # Skip binary files

    for lineno, line in enumerate(content.splitlines(), start=1):
        code_part = line.split("#")[0]
        if PRINT_PATTERN.search(code_part):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

    for match in LOGGER_CALL_PATTERN.finditer(content):
        lineno = content.count("\n", 0, match.start()) + 1
        call = _call_text(content, match.end())
        call_lower = call.lower()
        has_redaction = any(rp in call for rp in REDACTION_PATTERNS)
        if has_redaction:
            continue
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in call_lower:
                errors.append(
                    f"{filepath}:{lineno}: logger call with '{keyword}' "
                    "must use redaction (safe_log_context/redact_value/hash_key)"
                )

    return errors


def check_tree(src_dir: Path) -> list[str]:
    """Check every .py file under ``src_dir``."""
    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))
    return all_errors


def main(argv: list[str] | None = None) -> int:
    """Run gate check on src directory."""
    argv = sys.argv[1:] if argv is None else argv
    src_dir = Path(argv[0]) if argv else Path("src")

    if not src_dir.exists():
        # Try from project root
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors = check_tree(src_dir)

    if all_errors:
        sys.stderr.write("PII gate FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
