import sys
from pathlib import Path

# Make `photo_faces` importable when the tests run from a source checkout
project_root = Path(__file__).parent.absolute()
sys.path.insert(0, str(project_root))
