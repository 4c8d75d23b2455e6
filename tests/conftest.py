"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that `import webllm`
works consistently in all tests, and that the shared fakes in
tests/fakes.py can be imported from any test subdirectory.
"""

import sys
from pathlib import Path


# Ensure project root and the tests directory are importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
TESTS_DIR = Path(__file__).resolve().parent
for path in (ROOT_DIR, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))
