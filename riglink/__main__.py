import sys

from riglink.main import main

sys.exit(main())
