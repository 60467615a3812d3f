"""Allow ``python -m assetflow``."""

from assetflow.cli import main

if __name__ == "__main__":
    main()
