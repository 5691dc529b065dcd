import sys

from pystategrid.cli import main

sys.exit(main())
