#!/usr/bin/env python3
"""
Test runner script for the Timesheet Planner backend
"""

import sys
import os
import subprocess


def run_tests():
    """Run all backend tests with coverage"""
    print("🧪 Running Timesheet Planner Backend Tests")
    print("=" * 50)

    backend_dir = os.path.dirname(os.path.abspath(__file__))
    os.chdir(backend_dir)

    cmd = [
        sys.executable, "-m", "pytest",
        "--cov=.",
        "--cov-report=html",
        "--cov-report=term-missing",
        "tests/",
        "-v"
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        print(f"❌ Error running tests: {e}")
        return False

    print(result.stdout)
    if result.stderr:
        print("STDERR:", result.stderr)

    print("\n" + "=" * 50)
    if result.returncode != 0:
        print("❌ Some tests failed!")
        return False

    print("✅ All tests passed!")
    print("📊 Coverage report generated in htmlcov/index.html")
    return True


def run_specific_test(test_path):
    """Run a single test module, class or function (pytest node id)"""
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    os.chdir(backend_dir)

    cmd = [sys.executable, "-m", "pytest", test_path, "-v"]
    result = subprocess.run(cmd)

    return result.returncode == 0


if __name__ == "__main__":
    if len(sys.argv) > 1:
        success = run_specific_test(sys.argv[1])
    else:
        success = run_tests()

    sys.exit(0 if success else 1)
