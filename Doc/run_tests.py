#!/usr/bin/env python
"""
Test runner script for the backend apps
Usage: python Doc/run_tests.py (from the project root)
"""
import os
import sys
from pathlib import Path

import django
from django.conf import settings
from django.test.utils import get_runner

if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.config.settings')
    os.environ.setdefault('DJANGO_TESTING', 'True')
    django.setup()
    TestRunner = get_runner(settings)
    test_runner = TestRunner()
    failures = test_runner.run_tests([
        'backend.core',
        'backend.catalog',
        'backend.orders',
        'backend.reports',
    ])
    sys.exit(bool(failures))
