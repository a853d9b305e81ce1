#!/usr/bin/env python3
"""
Exam handwriting recognition CLI - Main entry point.

Commands:
  exam-hwr predict     - Recognize the answer regions listed in a manifest
  exam-hwr recognize   - Recognize standalone line images (no persistence)
  exam-hwr decode      - Decode a saved probability matrix
"""

import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from exam_hwr import __version__

console = Console()

# Load environment variables from .env file if present
load_dotenv()


@click.group()
@click.version_option(version=__version__)
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose logging')
@click.option('--pretty', is_flag=True, help='Human readable logs instead of JSON lines')
@click.pass_context
def cli(ctx, verbose, pretty):
    """Handwritten exam answer recognition."""
    from exam_hwr.logging_setup import setup_logging

    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    handler = None
    if pretty:
        handler = RichHandler(console=console, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    setup_logging(verbose, handler=handler)


# Import subcommands
from exam_hwr.cli.predict import predict
from exam_hwr.cli.recognize import decode, recognize

cli.add_command(predict)
cli.add_command(recognize)
cli.add_command(decode)


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        if '--verbose' in sys.argv or '-v' in sys.argv:
            raise
        sys.exit(1)


if __name__ == '__main__':
    main()
