"""Edgeroute Server - Main entry point."""

import asyncio

from rich.console import Console

from edgeroute.core.config import RouterSettings
from edgeroute.server.app import RouterServer

console = Console()

BANNER = """
███████╗██████╗  ██████╗ ███████╗██████╗  ██████╗ ██╗   ██╗████████╗███████╗
██╔════╝██╔══██╗██╔════╝ ██╔════╝██╔══██╗██╔═══██╗██║   ██║╚══██╔══╝██╔════╝
█████╗  ██║  ██║██║  ███╗█████╗  ██████╔╝██║   ██║██║   ██║   ██║   █████╗
██╔══╝  ██║  ██║██║   ██║██╔══╝  ██╔══██╗██║   ██║██║   ██║   ██║   ██╔══╝
███████╗██████╔╝╚██████╔╝███████╗██║  ██║╚██████╔╝╚██████╔╝   ██║   ███████╗
╚══════╝╚═════╝  ╚═════╝ ╚══════╝╚═╝  ╚═╝ ╚═════╝  ╚═════╝    ╚═╝   ╚══════╝
                         EDGE TRAFFIC ROUTER
"""


def print_startup(settings: RouterSettings) -> None:
    console.print(BANNER, style="cyan")
    console.print(f"Listening on {settings.bind}", style="yellow")
    console.print(f"Origin: {settings.origin_url}", style="dim")
    store_target = {
        "memory": "in-process memory",
        "file": settings.store_path,
        "http": settings.store_url or "(unset)",
    }[settings.store_backend]
    console.print(f"Config store: {settings.store_backend} ({store_target})", style="dim")
    if settings.admin_token:
        console.print(f"Admin API: enabled at {settings.admin_prefix}", style="green")
    else:
        console.print("Admin API: disabled (set EDGEROUTE_ADMIN_TOKEN to enable)", style="dim")


async def run_server(settings: RouterSettings) -> None:
    """Run the router until interrupted."""
    server = RouterServer(settings)
    try:
        await server.start()
        console.print("Router started, press Ctrl+C to stop", style="green")
        await asyncio.Event().wait()
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")
    finally:
        await server.stop()
