import os
import sys
import logging
from dotenv import load_dotenv
from rich.table import Table

from faketp.core import NAME, VERSION, console, setup_logging
from faketp.config import ConfigError, CONFIG_FILE, apply_env_overrides, load_config
from faketp.credentials import CredentialError, load_credentials
from faketp.port_pool import PortRangeError, build_pools, start_pools, stop_pools
from faketp.commands import CommandDispatcher
from faketp.server import FTPServer

# Load environment variables
load_dotenv()


def print_summary(config, credentials, server):
    table = Table(title=f"{NAME} {VERSION}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    host, port = server.server_address
    table.add_row("Listening", f"{host}:{port}")
    table.add_row("Accounts", str(len(credentials)))
    table.add_row("Data ports", f"{config.data_port_begin}-{config.data_port_end}")
    table.add_row("Active mode", "strict (port 20)" if config.strict_active_mode else "shared pool")
    table.add_row("Permissive", "yes" if config.permissive else "no")
    console.print(table)


def main():
    setup_logging()
    config_path = os.getenv('FAKETP_CONFIG', CONFIG_FILE)

    try:
        config = apply_env_overrides(load_config(config_path))
        credentials = load_credentials(config.user_auth_file)
        passive_pool, active_pool = build_pools(config)
    except (ConfigError, CredentialError, PortRangeError) as e:
        logging.error(f"{e}")
        sys.exit(1)

    start_pools(passive_pool, active_pool)
    dispatcher = CommandDispatcher(config, credentials, passive_pool, active_pool)
    server = FTPServer(config, dispatcher)
    try:
        server.bind()
    except OSError as e:
        logging.error(f"Error opening socket: {e}")
        stop_pools(passive_pool, active_pool)
        sys.exit(1)

    print_summary(config, credentials, server)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")
    finally:
        server.shutdown()
        stop_pools(passive_pool, active_pool)


if __name__ == "__main__":
    main()
