"""
Module entry point for: python -m renderer

Allows running the renderer directly as a module:
    python -m renderer render <json_path> [options]
    python -m renderer transcript <json_path>
    python -m renderer serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
