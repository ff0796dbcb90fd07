import os
import sys
import tempfile

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Keep importing toricguide.storage from creating directories in the working tree
os.environ.setdefault("TORICGUIDE_DATA_DIR", tempfile.mkdtemp(prefix="toricguide-tests-"))
