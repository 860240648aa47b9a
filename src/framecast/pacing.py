"""Stop-aware sleeping shared by the capture task and stream sessions."""

import asyncio


async def pause(stop_event: asyncio.Event, seconds: float) -> bool:
    """
    Sleep for up to `seconds`, waking early if stop_event is set.

    Returns:
        True if the stop event was set, False if the full pause elapsed.
    """
    if stop_event.is_set():
        return True
    if seconds <= 0:
        await asyncio.sleep(0)
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False
