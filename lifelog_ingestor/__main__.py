import sys

from lifelog_ingestor.main import main

sys.exit(main())
