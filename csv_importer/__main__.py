import sys

from csv_importer.cli import main

sys.exit(main())
