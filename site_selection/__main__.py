import sys

from site_selection.pipeline import main

sys.exit(main())
