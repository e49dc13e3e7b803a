"""
SweepCoordinator: wires one Driver and one Probe through a ControlChannel,
runs both on a two-worker thread pool and joins them.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from . import broker
from .actor import Actor, ActorOutcome
from .control import ControlChannel, TopicTemplate, is_templated
from .driver import Driver
from .exceptions import SweepAborted, TopicTemplateError
from .logs import actor_logger
from .probe import Probe
from .report import StepReport, format_table


class Topology(Enum):
    DRIVER_SOURCE = "driver"   # Driver owns the plan, Probe follows
    PROBE_SOURCE  = "probe"    # Probe reads requests, Driver follows


@dataclass
class SweepResult:
    driver:  ActorOutcome
    probe:   ActorOutcome
    reports: list[StepReport] = field(default_factory=list)


class SweepCoordinator:
    """
    Owns the run. Both actors share nothing but the channel; whichever
    finishes first closes it so the other one winds down too. An exception in
    either actor is re-raised as SweepAborted once both have been joined.
    """

    def __init__(self, config, topology: Topology, link_factory=None, logger=None,
                 listener=None, sleep=None):
        self.config = config
        self.topology = topology
        self.log = actor_logger(logger, role="coordinator")
        self.check_topology()

        factory = link_factory or broker.link_factory(config)
        self.channel = ControlChannel(f"{topology.value}-source")
        self.driver = Driver(
            config, factory,
            logger=actor_logger(logger, role="driver", client_id=config.publisher_connection.id),
            listener=listener, sleep=sleep)
        self.probe = Probe(
            config, factory,
            logger=actor_logger(logger, role="probe", client_id=config.subscriber_connection.id),
            sleep=sleep)

    def check_topology(self):
        """Topic configuration must match the chosen parameter source."""
        sub_topics = self.config.subscriber_connection.topics
        pub_topics = self.config.publisher_connection.topics
        if self.topology is Topology.DRIVER_SOURCE:
            TopicTemplate.first_of(sub_topics, "subscriber")
        else:
            TopicTemplate.first_of(pub_topics, "publisher")
            if any(is_templated(t) for t in sub_topics):
                raise TopicTemplateError(
                    "subscriber topics must be static when the probe is the parameter source")

    # --------------------------------------------------------------------- #
    # Actor bodies (run on pool threads)
    # --------------------------------------------------------------------- #
    def _guard(self, actor: Actor, body) -> ActorOutcome:
        threading.current_thread().name = actor.role
        try:
            return body()
        except BaseException:
            try:
                actor.disconnect()
            except Exception as e:
                actor.log.error("Disconnect after failure also failed: %s", e)
            raise
        finally:
            self.channel.close()

    def _run_driver(self) -> ActorOutcome:
        def body():
            self.driver.start()
            if self.topology is Topology.DRIVER_SOURCE:
                return self.driver.run_plan(self.channel)
            return self.driver.run_from_channel(self.channel)
        return self._guard(self.driver, body)

    def _run_probe(self) -> ActorOutcome:
        def body():
            self.probe.start()
            if self.topology is Topology.DRIVER_SOURCE:
                return self.probe.run_templated(self.channel)
            return self.probe.run_static(self.channel)
        return self._guard(self.probe, body)

    # --------------------------------------------------------------------- #
    # Run
    # --------------------------------------------------------------------- #
    def stop(self):
        self.log.warning("Stopping sweep")
        self.driver.stop()
        self.probe.stop()
        self.channel.close()

    def run(self) -> SweepResult:
        self.log.info("Starting sweep against %s (%s is the parameter source)",
                      self.config.broker_uri, self.topology.value)
        outcomes: dict[str, ActorOutcome] = {}
        failures: list[tuple[str, BaseException]] = []

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sweep") as pool:
            futures = {
                "driver": pool.submit(self._run_driver),
                "probe":  pool.submit(self._run_probe),
            }
            try:
                for role, fut in futures.items():
                    try:
                        outcomes[role] = fut.result()
                    except Exception as e:
                        self.log.critical("Handler thread %s terminated abnormally: %s",
                                          role, e, exc_info=e)
                        failures.append((role, e))
            except KeyboardInterrupt:
                self.stop()
                raise

        if failures:
            role, cause = failures[0]
            raise SweepAborted(role, cause) from cause

        result = SweepResult(outcomes["driver"], outcomes["probe"], list(self.probe.reports))
        self.log.info("Sweep finished: driver=%s probe=%s",
                      result.driver.value, result.probe.value)
        if result.reports:
            for line in format_table(result.reports):
                self.log.info(line)
        return result
