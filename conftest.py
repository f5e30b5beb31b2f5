"""Root conftest.py for pytest.

Puts the project root on sys.path so `cloudseq` and `config` import from the
checkout even when the package is not installed.
"""
import os
import sys

project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)


def pytest_configure(config):
    """Keep the checkout first on the path for collection."""
    if project_root not in sys.path:
        sys.path.insert(0, project_root)
