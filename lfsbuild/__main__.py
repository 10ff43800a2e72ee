import sys

from lfsbuild.cli import main

sys.exit(main())
