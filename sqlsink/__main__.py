import sys

from sqlsink.cli import main

sys.exit(main())
