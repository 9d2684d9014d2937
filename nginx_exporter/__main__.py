import sys

from nginx_exporter.app import main

sys.exit(main())
