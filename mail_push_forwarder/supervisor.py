import asyncio
import logging

from .config import Config
from .heartbeat import Heartbeat
from .monitor import AccountMonitor, MonitorState
from .tool import Tool

EXIT_OK = 0
EXIT_FATAL = 1


class Receiver:
    """
        Runs one AccountMonitor task per configured account. The accounts do
        not interact; the first one to give up ends the whole process.
    """
    config: Config
    monitors: dict[str, AccountMonitor]
    heartbeat: Heartbeat

    def __init__(self, config: Config, tool: Tool, monitor_factory=None, heartbeat: Heartbeat | None = None):
        self.config = config
        self.monitors = {}
        if monitor_factory is None:
            def monitor_factory(account):
                return AccountMonitor(account, tool,
                                      max_retries=config.app.max_retries,
                                      retry_delay=config.app.retry_delay)
        for name, account in config.accounts.items():
            self.monitors[name] = monitor_factory(account)
        self.heartbeat = heartbeat if heartbeat is not None else \
            Heartbeat(config.app.heartbeat_url, config.app.heartbeat_interval)

    async def run(self, stop_event: asyncio.Event | None = None) -> int:
        """
        Start all monitors and block until one of them is given up (exit code
        1) or `stop_event` is set (exit code 0).
        """
        if not self.monitors:
            logging.critical("No mail account configured")
            return EXIT_FATAL

        tasks: dict[asyncio.Task, str] = {}
        for name, monitor in self.monitors.items():
            tasks[asyncio.create_task(monitor.run(), name=name)] = name
        self.heartbeat.start()

        waiting = set(tasks)
        stop_task = None
        if stop_event is not None:
            stop_task = asyncio.ensure_future(stop_event.wait())
            waiting.add(stop_task)

        try:
            done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            if stop_task is not None and stop_task in done:
                logging.info("Stop requested, exiting")
                return EXIT_OK

            for task in done:
                name = tasks[task]
                error = task.exception()
                if error is not None:
                    logging.critical("[%s] Monitor crashed: %s" % (name, error))
                elif task.result() is MonitorState.FATAL:
                    logging.critical("[%s] Account given up after %i attempts, stopping"
                                     % (name, self.monitors[name].retries))
            return EXIT_FATAL

        finally:
            pending = [task for task in tasks if not task.done()]
            if stop_task is not None and not stop_task.done():
                pending.append(stop_task)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            await self.heartbeat.close()
            for monitor in self.monitors.values():
                await monitor.close()
