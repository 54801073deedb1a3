import sys

from atlas_ingestion.main import main

sys.exit(main())
