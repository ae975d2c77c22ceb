import os
import sys

# Add src to sys.path to allow importing the daylog package without installing it
sys.path.append(os.path.join(os.path.dirname(__file__), 'src'))
from daylog.cli import main

if __name__ == "__main__":
    sys.exit(main())
