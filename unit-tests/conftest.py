import sys
from pathlib import Path

# Insert project root so the nlr package is importable without installation,
# and this directory so suites can share network_fixtures
PROJECT_ROOT = Path(__file__).resolve().parent.parent
TESTS_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(TESTS_DIR))
