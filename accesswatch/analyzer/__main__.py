import sys

from accesswatch.analyzer.cli import main

sys.exit(main())
