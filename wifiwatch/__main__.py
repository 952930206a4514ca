import sys

from wifiwatch.cli import main

sys.exit(main())
