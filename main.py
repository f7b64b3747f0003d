"""rubac command-line interface."""

from rubac.cli import main

if __name__ == "__main__":
    main()
