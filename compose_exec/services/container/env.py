"""Environment merging.

Entries use the ``KEY=VALUE`` form. A bare ``KEY`` (no ``=``) is key-only: the
engine passes the key through from its own environment, which is distinct from
``KEY=`` (set to the empty string).
"""

from typing import Dict, List, Optional, Sequence


def split_entry(entry: str):
    """Split ``KEY=VALUE`` into ``(key, value)``; ``value`` is None for key-only."""
    key, sep, value = entry.partition("=")
    return key, (value if sep else None)


def merge_env(base: Sequence[str], overrides: Optional[Sequence[str]] = None) -> List[str]:
    """Merge two environment lists.

    Later entries replace earlier ones for the same key, whether they carry a
    value or are key-only. Keys keep the position where they were first seen.

    >>> merge_env(["A", "B=2"], ["A=1", "C"])
    ['A=1', 'B=2', 'C']
    """
    merged: Dict[str, Optional[str]] = {}
    for entry in list(base) + list(overrides or []):
        if not entry:
            continue
        key, value = split_entry(entry)
        merged[key] = value
    return [key if value is None else f"{key}={value}" for key, value in merged.items()]
