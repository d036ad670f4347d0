"""Systemd notify support for the nookd service.

Sends READY/WATCHDOG/STATUS/STOPPING messages to the systemd notify socket.
Silently no-ops when NOTIFY_SOCKET is unset (foreground / dev mode).

Usage:
    from .watchdog import sd_notify, watchdog_loop
    asyncio.create_task(watchdog_loop(supervisor.status))
"""

import asyncio
import logging
import os
import socket

logger = logging.getLogger(__name__)


def sd_notify(msg: str) -> bool:
    """Send a notification message to the systemd notify socket.

    Returns False when not running under systemd.
    """
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
    except OSError as e:
        logger.debug("sd_notify(%r) failed: %s", msg, e)
        return False
    finally:
        sock.close()
    return True


async def watchdog_loop(status=None, interval: int = 20):
    """Send WATCHDOG=1 every *interval* seconds.  Call as asyncio.create_task().

    Sends READY=1 first so systemd knows startup is complete (Type=notify).
    *status* is an optional callable whose result is reported as STATUS=.
    """
    sd_notify("READY=1")
    logger.debug("Watchdog started (interval=%ds)", interval)
    while True:
        msg = "WATCHDOG=1"
        if status is not None:
            msg += f"\nSTATUS={status()}"
        sd_notify(msg)
        await asyncio.sleep(interval)
