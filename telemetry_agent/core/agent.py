"""
Core Agent module for the Host Telemetry Agent.
"""
import threading
from dataclasses import dataclass, field
from typing import Optional, List

from telemetry_agent.communication import HttpClient, LokiLogSink, PushGatewayMetricsSink
from telemetry_agent.config import AppConfig
from telemetry_agent.core.agent_state import AgentState
from telemetry_agent.core.buffer import SnapshotBuffer, SnapshotBroadcaster
from telemetry_agent.core.flush_scheduler import FlushScheduler
from telemetry_agent.ipc import LiveStreamServer, StreamChannel, create_channel
from telemetry_agent.monitoring import MetricSource, Sampler
from telemetry_agent.system import get_host_name, get_staging_log_path, determine_channel_address
from telemetry_agent.utils import get_logger

logger = get_logger("agent")

MAIN_LOOP_POLL_SEC = 1.0
THREAD_JOIN_TIMEOUT_SEC = 5.0
# A flush in progress may still be waiting on a Loki request and the Pushgateway push
FLUSH_JOIN_HTTP_TIMEOUTS = 2


@dataclass
class AgentContext:
    """
    Everything the worker threads share, built once at startup.

    There are no process-wide clients or registries: each component receives
    what it needs from this context.
    """
    config: AppConfig
    host_name: str
    base_directory: str
    http_client: HttpClient
    log_sink: LokiLogSink
    metrics_sink: PushGatewayMetricsSink
    buffer: SnapshotBuffer
    broadcaster: SnapshotBroadcaster
    stop_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def build(cls, config: AppConfig, base_directory: str,
              host_name: Optional[str] = None,
              http_client: Optional[HttpClient] = None) -> 'AgentContext':
        """
        Creates the shared HTTP client, sinks, buffer and broadcaster.

        :param config: Loaded settings
        :type config: AppConfig
        :param base_directory: Agent base directory
        :type base_directory: str
        :param host_name: Host label override (defaults to the machine name)
        :type host_name: Optional[str]
        :param http_client: HTTP client override (tests inject a fake)
        :type http_client: Optional[HttpClient]
        :return: The context
        :rtype: AgentContext
        """
        host_name = host_name or get_host_name()
        http_client = http_client or HttpClient(timeout=config.http_timeout_sec)
        return cls(
            config=config,
            host_name=host_name,
            base_directory=base_directory,
            http_client=http_client,
            log_sink=LokiLogSink(config, host_name, http_client),
            metrics_sink=PushGatewayMetricsSink(config, host_name, http_client),
            buffer=SnapshotBuffer(config.buffer_max_size),
            broadcaster=SnapshotBroadcaster(),
        )

    @property
    def staging_path(self) -> str:
        return get_staging_log_path(self.base_directory)

    @property
    def channel_address(self) -> str:
        return determine_channel_address(self.config.pipe_name, self.base_directory)


class TelemetryAgent:
    """
    Orchestrates the worker threads of the Host Telemetry Agent.

    :meth:`start` launches the sampler, the flush scheduler and the live
    stream server, then blocks until the shared stop event is set (by
    :meth:`request_stop`, a signal handler or a fatal error). Teardown always
    goes through :meth:`graceful_shutdown`, which is safe to call more than
    once and from any thread.
    """

    def __init__(self,
                 context: AgentContext,
                 source: MetricSource,
                 channel: Optional[StreamChannel] = None,
                 warmup_delay_sec: float = 1.0):
        """
        Initialize the agent with its dependencies.

        :param context: Shared agent context
        :type context: AgentContext
        :param source: Metric source sampled every tick
        :type source: MetricSource
        :param channel: Live stream channel; defaults to the platform channel for ``pipe_name``
        :type channel: Optional[StreamChannel]
        :param warmup_delay_sec: Pause between counter warm-up and the first tick
        :type warmup_delay_sec: float
        """
        logger.info("Initializing Agent...")
        self._state = AgentState.STARTING
        self._state_lock = threading.Lock()
        self._shutdown_lock = threading.Lock()

        self.context = context
        self.source = source
        self.channel = channel
        self.warmup_delay_sec = warmup_delay_sec

        self.sampler: Optional[Sampler] = None
        self.flush_scheduler: Optional[FlushScheduler] = None
        self.stream_server: Optional[LiveStreamServer] = None
        self._started = False

        config = self.context.config
        logger.info(f"Agent Config: Host={self.context.host_name}, Sample Interval={config.sample_interval_sec}s, "
                    f"Flush Interval={config.flush_interval_sec}s, Base Directory={self.context.base_directory}")

    @property
    def stop_event(self) -> threading.Event:
        return self.context.stop_event

    def start(self):
        """
        Starts the worker threads and blocks until the agent is asked to stop.
        """
        if self._started or self.get_state() == AgentState.STOPPED:
            logger.warning("Agent start requested but already started or stopped.")
            return
        self._started = True

        self._set_state(AgentState.STARTING)
        logger.info("================ Starting Agent ================")

        try:
            self._start_threads()
            self._set_state(AgentState.RUNNING)
            logger.info("Agent started successfully. Sampling, flushing and streaming telemetry.")

            while not self.stop_event.wait(MAIN_LOOP_POLL_SEC):
                continue

        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received (Ctrl+C). Stopping agent...")
        except Exception as e:
            logger.critical(f"Critical error in agent main loop: {e}", exc_info=True)
        finally:
            self.graceful_shutdown()

    def _start_threads(self):
        ctx = self.context
        config = ctx.config

        self.sampler = Sampler.from_source(
            self.source, ctx.buffer, ctx.broadcaster, ctx.stop_event,
            interval_sec=config.sample_interval_sec,
            warmup_delay_sec=self.warmup_delay_sec
        )
        self.flush_scheduler = FlushScheduler(
            ctx.buffer, ctx.log_sink, ctx.metrics_sink, ctx.staging_path, ctx.stop_event,
            interval_sec=config.flush_interval_sec
        )

        try:
            channel = self.channel or create_channel(ctx.channel_address)
            self.stream_server = LiveStreamServer(channel, ctx.broadcaster, ctx.stop_event)
        except ValueError as e:
            logger.error(f"Failed to initialize live stream server: {e}", exc_info=True)
            self.stream_server = None

        self.sampler.start()
        self.flush_scheduler.start()
        if self.stream_server:
            self.stream_server.start()

    def request_stop(self):
        """
        Asks the agent to stop; :meth:`start` returns after teardown completes.
        """
        logger.info("Stop requested. Initiating graceful shutdown.")
        self.stop_event.set()

    def graceful_shutdown(self):
        """
        Stops all worker threads and releases resources.
        """
        with self._shutdown_lock:
            if self.get_state() in (AgentState.SHUTTING_DOWN, AgentState.STOPPED):
                logger.debug("Graceful shutdown called but agent already stopping/stopped.")
                return
            self._set_state(AgentState.SHUTTING_DOWN)

        logger.info("================ Initiating Graceful Shutdown ================")
        self.stop_event.set()

        if self.stream_server and self.stream_server.is_alive():
            logger.debug("Stopping live stream server...")
            self.stream_server.stop()

        for thread in self._worker_threads():
            if thread.is_alive():
                logger.debug(f"Waiting for {thread.name} thread to join...")
                thread.join(timeout=self._join_timeout(thread))
                if thread.is_alive():
                    logger.warning(f"{thread.name} thread did not join within timeout.")
                else:
                    logger.debug(f"{thread.name} thread joined.")

        logger.debug("Closing HTTP client...")
        self.context.http_client.close()

        try:
            self.source.close()
        except Exception as e:
            logger.warning(f"Error closing metric source: {e}")

        self._set_state(AgentState.STOPPED)
        logger.info("================ Agent Shutdown Complete ================")

    def _join_timeout(self, thread: threading.Thread) -> float:
        if thread is self.flush_scheduler:
            return THREAD_JOIN_TIMEOUT_SEC + FLUSH_JOIN_HTTP_TIMEOUTS * self.context.config.http_timeout_sec
        return THREAD_JOIN_TIMEOUT_SEC

    def _worker_threads(self) -> List[threading.Thread]:
        return [t for t in (self.sampler, self.flush_scheduler, self.stream_server) if t is not None]

    def get_state(self) -> AgentState:
        """
        Gets the current agent state thread-safely.

        :return: Current agent state
        :rtype: AgentState
        """
        with self._state_lock:
            return self._state

    def _set_state(self, new_state: AgentState) -> bool:
        """
        Sets the agent's state thread-safely and logs the transition.

        :param new_state: New state to set
        :type new_state: AgentState
        :return: True if state was changed
        :rtype: bool
        """
        with self._state_lock:
            if self._state != new_state:
                logger.info(f"State transition: {self._state.name} -> {new_state.name}")
                self._state = new_state
                return True
            return False
