"""Allow ``python -m tidyd``."""

import sys

from tidyd.main import main

sys.exit(main())
