import sys

from pivseal.cli import main

sys.exit(main())
