import sys

from uiharness.cli import main

sys.exit(main())
