import sys

from mailfetch.cli import main

sys.exit(main())
