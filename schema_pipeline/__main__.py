"""Allow ``python -m schema_pipeline``."""

from schema_pipeline.cli.main import main

if __name__ == "__main__":
    main()
