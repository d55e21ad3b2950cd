#!/usr/bin/env python3
"""
run_tests.py - Test runner for exifmv

Runs the unit, command line and integration suites and reports a summary.
"""

import importlib.util
import sys
import subprocess
from pathlib import Path

HERE = Path(__file__).parent

UNIT_SUITES = ["test_exifmv.py", "test_metadata.py", "test_simple.py"]


def run_script(script: str, timeout: int, capture: bool = True):
    """Run one test script with the current interpreter."""
    try:
        result = subprocess.run(
            [sys.executable, str(HERE / script)],
            capture_output=capture,
            text=True,
            timeout=timeout,
            cwd=HERE,
        )
    except subprocess.TimeoutExpired:
        print(f"{script} timed out")
        return False

    if capture:
        print(result.stdout)
        if result.stderr:
            print("STDERR:", result.stderr)

    return result.returncode == 0


def run_unit_tests():
    """Run the unittest suites."""
    print("=" * 60)
    print("RUNNING UNIT TESTS")
    print("=" * 60)

    return all([run_script(script, timeout=120) for script in UNIT_SUITES])


def run_integration_tests():
    """Run integration tests."""
    print("\n" + "=" * 60)
    print("RUNNING INTEGRATION TESTS")
    print("=" * 60)

    # Show output in real-time
    return run_script("test_integration.py", timeout=300, capture=False)


def check_dependencies():
    """Check if required dependencies are available."""
    print("Checking dependencies...")

    ok = True
    for module, package in (("hachoir", "hachoir"), ("exifread", "ExifRead"), ("send2trash", "Send2Trash")):
        if importlib.util.find_spec(module) is None:
            print(f"✗ {module} not available - install with: pip install {package}")
            ok = False
        else:
            print(f"✓ {module} available")

    if not (HERE / "exifmv.py").exists():
        print("✗ exifmv.py not found next to run_tests.py")
        return False
    print("✓ exifmv.py found")

    return ok


def main():
    """Run all tests."""
    print("exifmv Test Suite")
    print("=" * 60)

    if not check_dependencies():
        print("\n❌ Dependency check failed")
        return 1

    unit_success = run_unit_tests()
    integration_success = run_integration_tests()

    print("\n" + "=" * 60)
    print("TEST SUMMARY")
    print("=" * 60)
    print(f"Unit Tests: {'✓ PASS' if unit_success else '✗ FAIL'}")
    print(f"Integration Tests: {'✓ PASS' if integration_success else '✗ FAIL'}")

    if unit_success and integration_success:
        print("\n🎉 All tests passed!")
        return 0
    else:
        print("\n❌ Some tests failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
