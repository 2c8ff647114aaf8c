import os
import logging
from rich.console import Console
from rich.logging import RichHandler

NAME = "FakeTP"
VERSION = "0.1.0"

LOG_DIR = './logs'

console = Console()


def setup_logging(log_dir=LOG_DIR, level=logging.INFO):
    """Configure root logging: Rich on the console, plain file under log_dir"""
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logging.basicConfig(
        level=level,
        format='%(message)s',
        datefmt="[%X]",
        handlers=[
            logging.FileHandler(os.path.join(log_dir, 'faketp.log')),
            RichHandler(rich_tracebacks=True)
        ]
    )


def banner():
    return f"{NAME} ({VERSION})"
