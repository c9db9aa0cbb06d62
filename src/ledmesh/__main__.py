import sys

from ledmesh.cli import main

sys.exit(main())
