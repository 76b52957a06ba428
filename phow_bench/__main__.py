import sys

from phow_bench.cli import main

sys.exit(main())
