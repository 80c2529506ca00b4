import sys

from xyplugin.cli import main

sys.exit(main())
