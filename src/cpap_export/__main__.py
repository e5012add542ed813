"""Entry point for python -m cpap_export."""

from cpap_export.cli import main

if __name__ == "__main__":
    main()
