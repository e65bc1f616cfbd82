import sys

from bucketguard.worker import main

sys.exit(main())
