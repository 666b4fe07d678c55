"""Allow running as ``python -m sitepulse``."""

from . import main

main()
