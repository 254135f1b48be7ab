"""Allow ``python -m rwsep``."""

import sys

from rwsep.main import main

if __name__ == "__main__":
    sys.exit(main())
