import sys

from api_check.cli import main

sys.exit(main())
