"""Entry point for the kiosk operator console."""

from __future__ import annotations

from rich.console import Console

from kiosk.log import configure_logging
from kiosk.persistence import KioskStore
from kiosk.printer import check_printer_dependencies
from kiosk.rendering import format_receipt_preview
from kiosk.settings import load_settings


def show_status(store: KioskStore, console: Console) -> int:
    """Print mode, printer status, and the offline queue. Returns the queued count."""
    settings = load_settings(store)
    ok, message = check_printer_dependencies(settings)
    console.print(f"Kiosk status: [bold]{settings.kiosk_status.value}[/bold]  db={settings.db_name}")
    console.print(message, style="green" if ok else "red")

    queued = store.list_queued_transactions()
    console.print(f"Pending uploads: {len(queued)}")
    if queued:
        console.print(format_receipt_preview(queued[-1]))
    return len(queued)


def main() -> None:
    """Show the local kiosk state."""
    configure_logging()
    store = KioskStore()
    store.bootstrap_schema()
    show_status(store, Console())


if __name__ == "__main__":
    main()
