"""Entry point for ``python -m prow_image_builder``."""

from prow_image_builder.cli import app

if __name__ == "__main__":
    app()
