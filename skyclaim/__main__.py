"""python -m skyclaim [--config PATH] [--once] [--log-level LEVEL]"""

from skyclaim.cli import main

if __name__ == "__main__":
    main()
