"""
Safe KEY=value parser for cardsync.env.

Values are taken literally; nothing is evaluated by a shell. Values that
look like shell substitution or command chaining are refused outright so a
config file can never smuggle commands into the gh invocations built from it.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    re.compile(r'`'),
    re.compile(r'\$\('),
    re.compile(r'\$\{'),
    re.compile(r';'),
    re.compile(r'&&'),
    re.compile(r'\|'),
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')


def parse_env_text(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse KEY=value lines.

    Blank lines and lines starting with '#' are ignored. A single pair of
    matching surrounding quotes is stripped from values.

    Raises:
        ValueError: on a line without '=', an invalid key, a duplicate key,
            or a forbidden pattern in a value
    """
    result: dict[str, str] = {}

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue

        key, sep, value = line.partition('=')
        if not sep:
            raise ValueError(f"{source}:{lineno}: expected KEY=value")

        key = key.strip()
        value = value.strip()
        if not KEY_PATTERN.match(key):
            raise ValueError(f"{source}:{lineno}: invalid key '{key}'")
        if key in result:
            raise ValueError(f"{source}:{lineno}: duplicate key '{key}'")

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        if any(p.search(value) for p in FORBIDDEN_PATTERNS):
            raise ValueError(f"{source}:{lineno}: forbidden pattern in value of '{key}'")

        result[key] = value

    return result


def load_env(path: Path) -> dict[str, str]:
    """
    Read and parse an env file.

    Raises:
        FileNotFoundError: if the file doesn't exist
        ValueError: see parse_env_text
    """
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {path}")
    return parse_env_text(path.read_text(), source=str(path))
