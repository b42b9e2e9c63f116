"""Background polling of open bitcoin invoices until they settle."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from glassworks.core.config import get_settings
from glassworks.schemas.payment import BitcoinInvoice, InvoiceStatus
from glassworks.services.provider_errors import PaymentProviderError

logger = logging.getLogger(__name__)

InvoiceFetcher = Callable[[str], Awaitable[BitcoinInvoice]]
PaidHandler = Callable[[BitcoinInvoice], Awaitable[object]]


class InvoicePoller:
    """Polls one invoice on a fixed interval until it reaches a terminal state.

    The loop returns as soon as a terminal status is seen, so a paid
    invoice is handed to on_paid exactly once and never fetched again.
    """

    def __init__(
        self,
        fetch: InvoiceFetcher,
        interval_seconds: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the poller.

        Args:
            fetch: Coroutine function returning the invoice's current state.
            interval_seconds: Delay between polls.
            sleep: Sleep function, injectable for tests.
        """
        self._fetch = fetch
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Stop after the current poll. No further fetches are made."""
        self._stopped = True

    async def poll(self, invoice_id: str, on_paid: PaidHandler) -> InvoiceStatus:
        """Poll until terminal or stopped.

        Args:
            invoice_id: Invoice to watch.
            on_paid: Called with the invoice the first time it is seen paid.

        Returns:
            InvoiceStatus: The terminal status, or PENDING if stopped first.
        """
        expires_at: datetime | None = None

        while not self._stopped:
            try:
                invoice = await self._fetch(invoice_id)
            except PaymentProviderError as e:
                logger.warning("Invoice %s poll failed: %s", invoice_id, str(e))
                invoice = None

            if invoice is not None:
                expires_at = invoice.expires_at
                status = invoice.effective_status()
                if status.is_terminal:
                    self._stopped = True
                    logger.info("Invoice %s reached %s", invoice_id, status.value)
                    if status is InvoiceStatus.PAID:
                        await on_paid(invoice)
                    return status
            elif expires_at is not None and datetime.now(timezone.utc) >= expires_at:
                # Provider unreachable but the invoice can no longer be paid
                self._stopped = True
                return InvoiceStatus.EXPIRED

            await self._sleep(self.interval_seconds)

        return InvoiceStatus.PENDING


class InvoiceWatcher:
    """Runs one poller task per open invoice."""

    def __init__(self, interval_seconds: float = 3.0) -> None:
        """Initialize the watcher.

        Args:
            interval_seconds: Poll interval for every invoice.
        """
        self.interval_seconds = interval_seconds
        self._pollers: dict[str, InvoicePoller] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def watch(self, invoice_id: str, fetch: InvoiceFetcher, on_paid: PaidHandler) -> bool:
        """Start watching an invoice. Returns False if it is already watched."""
        if invoice_id in self._tasks:
            return False

        poller = InvoicePoller(fetch, interval_seconds=self.interval_seconds)
        task = asyncio.create_task(self._run(invoice_id, poller, on_paid))
        self._pollers[invoice_id] = poller
        self._tasks[invoice_id] = task
        task.add_done_callback(lambda done: self._forget(invoice_id, done))
        logger.info("Watching invoice %s", invoice_id)
        return True

    def unwatch(self, invoice_id: str) -> None:
        """Stop watching an invoice, e.g. when the customer switches rails."""
        poller = self._pollers.get(invoice_id)
        if poller:
            poller.stop()
        task = self._tasks.get(invoice_id)
        if task and not task.done():
            task.cancel()

    def is_watching(self, invoice_id: str) -> bool:
        return invoice_id in self._tasks

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel every poller task and wait for them to finish."""
        tasks = list(self._tasks.values())
        for poller in self._pollers.values():
            poller.stop()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Invoice watcher stopped (%d tasks cancelled)", len(tasks))

    async def _run(self, invoice_id: str, poller: InvoicePoller, on_paid: PaidHandler) -> None:
        try:
            await poller.poll(invoice_id, on_paid)
        except Exception as e:
            logger.error("Invoice %s watcher failed: %s", invoice_id, str(e), exc_info=True)

    def _forget(self, invoice_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(invoice_id) is not task:
            return
        self._pollers.pop(invoice_id, None)
        self._tasks.pop(invoice_id, None)


# Global singleton instance
_invoice_watcher: InvoiceWatcher | None = None


def get_invoice_watcher() -> InvoiceWatcher:
    """Get or create the global invoice watcher instance."""
    global _invoice_watcher
    if _invoice_watcher is None:
        _invoice_watcher = InvoiceWatcher(get_settings().bitcoin_poll_interval_seconds)
    return _invoice_watcher


async def init_invoice_watcher() -> InvoiceWatcher:
    """Create the invoice watcher. Call at app startup."""
    watcher = get_invoice_watcher()
    logger.info("Invoice watcher ready (interval %.1fs)", watcher.interval_seconds)
    return watcher


async def shutdown_invoice_watcher() -> None:
    """Cancel all invoice polling. Call at app shutdown."""
    global _invoice_watcher
    if _invoice_watcher:
        await _invoice_watcher.shutdown()
        _invoice_watcher = None
