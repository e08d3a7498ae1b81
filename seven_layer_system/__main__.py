import sys

from seven_layer_system.cli import main

sys.exit(main())
