"""
Secret lookup helpers.
"""

import os
from pathlib import Path
from typing import Optional

SECRETS_DIR = Path("/run/secrets")


def read_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Read a secret by name.

    Lookup order:
    1. Environment variable ``NAME``
    2. File referenced by ``NAME_FILE``
    3. Docker secret at ``/run/secrets/name`` (lower-cased)

    Returns the stripped value, or ``default`` if nothing is found.
    """
    value = os.environ.get(name)
    if value:
        return value.strip()

    file_path = os.environ.get(f"{name}_FILE")
    candidates = [Path(file_path)] if file_path else []
    candidates.append(SECRETS_DIR / name.lower())

    for path in candidates:
        try:
            if path.is_file():
                return path.read_text(encoding="utf-8").strip()
        except OSError:
            continue

    return default
