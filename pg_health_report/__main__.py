import sys

from pg_health_report.main import main

sys.exit(main())
