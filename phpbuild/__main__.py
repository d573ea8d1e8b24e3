# php-build/phpbuild/__main__.py
import sys

from phpbuild.cli import main

sys.exit(main())
