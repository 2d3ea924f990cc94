#!/usr/bin/env python3
"""
check_providers.py - AI Provider and Collaboration Config Check

Reads configuration from .env and reports which AI providers are usable.
Optionally sends a live test prompt to each configured provider.

Usage:
    python3 check_providers.py            # Configuration only, no network
    python3 check_providers.py --test     # Also run a live connection test
    python3 check_providers.py --json     # Output as JSON for scripting
"""

import argparse
import json
import sys
from typing import Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ai_connector import AIRequestClient
from planner_config import configure_logging, get_config
from planning_assistant import PlanningAssistant
from provider_adapters import ADAPTERS


def check_provider(name: str, config, live: bool = False) -> Dict:
    """Report one provider's configuration, and optionally a live test result."""
    client = AIRequestClient.from_config(name, config=config, max_retries=0)
    status = {
        **client.get_config(),
        "is_default": name == config.DEFAULT_PROVIDER.lower(),
        "live_ok": None,
        "detail": "Configured" if client.is_ready() else "Missing or placeholder API key",
    }

    if live and client.is_ready():
        result = PlanningAssistant(client).test_connection()
        status["live_ok"] = result.success
        status["detail"] = "Responding" if result.success else f"{result.error_kind.value}: {result.message[:60]}"

    client.close()
    return status


def print_results(results: List[Dict], issues: List[str], host: str, console: Optional[Console] = None):
    """Print results as a rich table."""
    console = console or Console()

    table = Table(title="AI Provider Status")
    table.add_column("Provider", style="cyan")
    table.add_column("Model")
    table.add_column("Key", justify="center")
    table.add_column("Live", justify="center")
    table.add_column("Detail")

    for r in results:
        name = f"{r['provider']} *" if r["is_default"] else r["provider"]
        key = "[green]OK[/green]" if r["is_initialized"] else "[red]MISSING[/red]"
        if r["live_ok"] is None:
            live = "[dim]-[/dim]"
        else:
            live = "[green]UP[/green]" if r["live_ok"] else "[red]DOWN[/red]"
        table.add_row(name, r["model"], key, live, r["detail"])

    console.print(Panel(table, border_style="blue"))
    console.print(f"  Collaboration socket: ws://{host}/collaboration")
    console.print("  * = default provider")

    if issues:
        console.print(Panel("\n".join(issues), title="Configuration Issues", border_style="red"))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check AI provider configuration")
    parser.add_argument("--test", action="store_true", help="Send a live test prompt to each configured provider")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--env", type=str, default=None, help="Config profile: development, production, test")
    args = parser.parse_args(argv)

    config = get_config(args.env)
    if not args.json:
        configure_logging(config)

    results = [check_provider(name, config, live=args.test) for name in sorted(ADAPTERS)]
    issues = config.validate_config()

    if args.json:
        print(json.dumps({"providers": results, "issues": issues}, indent=2))
    else:
        print_results(results, issues, config.COLLAB_WS_HOST)

    # Exit code: 0 if the default provider is usable
    default = next((r for r in results if r["is_default"]), None)
    default_ok = default is not None and default["is_initialized"] and default["live_ok"] is not False
    return 0 if default_ok and not issues else 1


if __name__ == "__main__":
    sys.exit(main())
