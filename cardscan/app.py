"""Main application entry point."""

from .cli import app


def main():
    """Run the card scanner CLI."""
    app()


if __name__ == "__main__":
    main()
