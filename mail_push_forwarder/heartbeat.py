import asyncio
import logging

import httpx

HEARTBEAT_TIMEOUT = 10.0


class Heartbeat:
    """
        Periodic GET to an external liveness URL, independent of the accounts' state.
    """
    url: str
    interval: float
    client: httpx.AsyncClient
    task: asyncio.Task | None = None

    def __init__(self, url: str, interval: float, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.interval = interval
        self.client = httpx.AsyncClient(timeout=HEARTBEAT_TIMEOUT, transport=transport)

    def start(self) -> asyncio.Task | None:
        if not self.url:
            return None
        logging.info("Starting heartbeat (interval: %is)" % self.interval)
        self.task = asyncio.create_task(self.run(), name='heartbeat')
        return self.task

    async def run(self):
        while True:
            await self.send()
            await asyncio.sleep(self.interval)

    async def send(self) -> bool:
        try:
            response = await self.client.get(self.url)
        except httpx.HTTPError as heartbeat_error:
            logging.warning("Heartbeat request failed: %s" % heartbeat_error)
            return False
        logging.info("Heartbeat response [%i]: %s" % (response.status_code, response.text[:200]))
        return response.is_success

    async def close(self):
        if self.task is not None:
            self.task.cancel()
            await asyncio.gather(self.task, return_exceptions=True)
            self.task = None
        await self.client.aclose()
