import sys

from reactd.cli import main

sys.exit(main())
