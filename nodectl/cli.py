import logging
import sys

import typer

from nodectl.commands import container, lb, node
from nodectl.config import get_settings
from nodectl.logging import setup_from_settings

app = typer.Typer(help="nodectl - remote node and container orchestration.")

app.add_typer(node.app, name="node")
app.add_typer(container.app, name="container")
app.add_typer(lb.app, name="lb")

debug_mode = False


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """nodectl - remote node and container orchestration."""
    global debug_mode
    debug_mode = debug
    setup_from_settings(get_settings(), debug=debug)
    if debug:
        logging.getLogger("nodectl").debug("Debug mode enabled")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
