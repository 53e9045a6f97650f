#!/usr/bin/env python3
"""
Test runner for the chat bridge unit tests.
"""

import os
import sys
import unittest


def run_tests(pattern: str = 'test_*.py'):
    """Discover and run all tests in the tests directory."""
    # Add the project root to path
    root = os.path.abspath(os.path.dirname(__file__))
    sys.path.insert(0, root)

    loader = unittest.TestLoader()
    test_suite = loader.discover(os.path.join(root, 'tests'), pattern=pattern, top_level_dir=root)

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(test_suite)

    # Return non-zero exit code if tests failed
    return 0 if result.wasSuccessful() else 1


if __name__ == '__main__':
    sys.exit(run_tests(sys.argv[1] if len(sys.argv) > 1 else 'test_*.py'))
