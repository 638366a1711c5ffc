import sys

from meshinject.main import main

sys.exit(main())
