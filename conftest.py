"""
Root pytest configuration for the Django project.

pytest-django loads config.settings_test (see [tool.pytest.ini_options]);
app-wide hooks live in app/conftest.py and app-specific fixtures in each
app's tests/conftest.py.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings_test")
