"""Entry point of the src package. Enables python -m src."""

from src.etl.pipeline.cli import main

if __name__ == "__main__":
    main()
