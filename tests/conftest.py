"""Pytest configuration for the overgo test suite."""

import sys
from pathlib import Path

# Add src directory to path so tests run without installing the package
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def contains_normalized(haystack: str, needle: str) -> bool:
    """Check if needle appears in haystack, normalizing line-by-line whitespace."""
    needle_lines = [line.strip() for line in needle.strip().split("\n") if line.strip()]
    haystack_lines = [line.strip() for line in haystack.split("\n") if line.strip()]
    if not needle_lines:
        return True
    for i in range(len(haystack_lines)):
        if haystack_lines[i] == needle_lines[0]:
            match = True
            for j in range(1, len(needle_lines)):
                if i + j >= len(haystack_lines) or haystack_lines[i + j] != needle_lines[j]:
                    match = False
                    break
            if match:
                return True
    return False
