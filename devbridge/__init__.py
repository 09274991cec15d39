import os
import asyncio

# The bridges drive external processes through asyncio subprocess pipes, which
# on Windows only work with the proactor loop.
if os.name == "nt":
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

__version__ = "0.1.0"
