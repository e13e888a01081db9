import sys
from pathlib import Path

# Run straight from a checkout; once installed, `geoserver-import` does the same.
sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from gs_provision import main  # noqa: E402

# Settings come from GEOSERVER_* environment variables or command line flags.
sys.exit(main())
