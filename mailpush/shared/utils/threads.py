"""Helpers for calling blocking client libraries from async code."""
import asyncio
from functools import partial


async def run_in_thread(func, *args, **kwargs):
    """Run a blocking function in a thread pool to avoid blocking the event loop."""
    loop = asyncio.get_running_loop()
    if kwargs:
        func = partial(func, **kwargs)
    return await loop.run_in_executor(None, func, *args)
