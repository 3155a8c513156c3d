import sys

from weaver.main import main

sys.exit(main())
