"""Allow ``python -m birdwatcher``."""

from birdwatcher.bootstrap import main

if __name__ == "__main__":
    main()
