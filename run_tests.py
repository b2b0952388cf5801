#!/usr/bin/env python3
"""Test runner for the card scanner.

Selects a marker group (unit, integration, slow) or a single test file
and optionally adds a coverage report for the cardscan package.
"""

import sys
import subprocess
import argparse
from pathlib import Path


def run_command(cmd, description):
    """Run a command and report how it exited."""
    print(f"\n{'='*60}")
    print(f"Running: {description}")
    print(f"Command: {' '.join(cmd)}")
    print(f"{'='*60}\n")

    try:
        subprocess.run(cmd, check=True, capture_output=False)
        print(f"\n✅ {description} passed")
        return True
    except subprocess.CalledProcessError as e:
        print(f"\n❌ {description} failed with exit code {e.returncode}")
        return False
    except FileNotFoundError:
        print(f"\n❌ Command not found: {cmd[0]}")
        print("Install the test extra first: pip install -e '.[test]'")
        return False


def build_command(args):
    cmd = [sys.executable, '-m', 'pytest']

    markers = []
    if args.unit:
        markers.append('unit')
    elif args.integration:
        markers.append('integration')
    elif args.slow:
        markers.append('slow')
    if args.fast:
        markers.append('not slow')
    if markers:
        cmd.extend(['-m', ' and '.join(markers)])

    cmd.append(f'tests/{args.file}' if args.file else 'tests/')

    if args.verbose:
        cmd.append('-v')
    if args.coverage:
        cmd.extend(['--cov=cardscan', '--cov-report=html', '--cov-report=term-missing'])

    cmd.extend(['--tb=short', '--strict-markers', '--disable-warnings'])
    return cmd


def main():
    parser = argparse.ArgumentParser(
        description="Run card scanner tests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_tests.py                        # Run all tests
  python run_tests.py --unit                 # Run only unit tests
  python run_tests.py --integration          # Run only integration tests
  python run_tests.py --file test_resolver.py
  python run_tests.py --fast --coverage
        """
    )
    parser.add_argument('--unit', action='store_true', help='Run only unit tests')
    parser.add_argument('--integration', action='store_true', help='Run only integration tests')
    parser.add_argument('--slow', action='store_true', help='Run only slow tests')
    parser.add_argument('--fast', action='store_true', help='Skip slow tests')
    parser.add_argument('--file', type=str, help='Run tests from a specific file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--coverage', action='store_true', help='Add a coverage report')
    args = parser.parse_args()

    if not Path('cardscan').exists() or not Path('tests').exists():
        print("❌ Error: run this script from the repository root")
        sys.exit(1)

    success = run_command(build_command(args), "Card Scanner Tests")

    if args.coverage and success:
        print("\n📊 Coverage report written to htmlcov/index.html")

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
