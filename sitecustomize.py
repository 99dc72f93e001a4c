# sitecustomize.py (repo root)
import os
import sys

ROOT = os.path.dirname(__file__)

CORE_SRC = os.path.join(ROOT, "packages", "core", "src")

if os.path.isdir(CORE_SRC) and CORE_SRC not in sys.path:
    sys.path.insert(0, CORE_SRC)
