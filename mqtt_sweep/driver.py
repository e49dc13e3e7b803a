"""
Driver: the publishing actor.

Two ways to run it:

  run_plan          -- the Driver owns the SweepPlan. For every grid point it
                       notifies the Probe over the ControlChannel and
                       announces the change on the request topics.
  run_from_channel  -- the Probe is the parameter source. Every accepted
                       delay update triggers a burst of payloads on the
                       templated response topic.
"""

from .actor import Actor, ActorOutcome, ActorStatus
from .control import Applied, ControlChannel, ControlMessage, TopicTemplate
from .exceptions import BrokerError, ChannelClosed
from .plan import SweepPlan
from .report import make_payload


class Driver(Actor):
    role = "driver"

    def __init__(self, config, link_factory, logger=None, listener=None,
                 sleep=None, plan: SweepPlan | None = None):
        super().__init__(config, link_factory, config.publisher_connection.id,
                         logger=logger, listener=listener, sleep=sleep)
        self.message_quantity = config.publisher_connection.message_quantity
        self.plan = plan or SweepPlan.from_settings(config.sweep)
        self._template: TopicTemplate | None = None

    @property
    def template(self) -> TopicTemplate:
        if self._template is None:
            self._template = TopicTemplate.first_of(
                self.config.publisher_connection.topics, "publisher")
        return self._template

    # --------------------------------------------------------------------- #
    # Publishing
    # --------------------------------------------------------------------- #
    def publish(self, topic: str, payload: str, qos: int) -> bool:
        try:
            self.link.publish(topic, payload, qos)
        except BrokerError as e:
            self.log.error("Error sending message: %s", e)
            return False
        self.log.info("Published [Message: %s] [Topic: %s] [QoS: %d]", payload, topic, qos)
        return True

    def publish_burst(self, topic: str) -> int:
        """
        Send ``message_quantity`` payloads at the current QoS, sleeping the
        current delay between sends. A failed publish ends the burst.
        Returns the number of messages sent.
        """
        qos, delay = self.state.current_qos, self.state.current_delay
        self.status = ActorStatus.PUBLISHING
        sent = 0
        for index in range(self.message_quantity):
            if index and self.sleep(delay / 1000.0):
                break
            if not self.publish(topic, make_payload(index, qos, delay), qos):
                break
            sent += 1
        self.status = ActorStatus.CONNECTED
        self.log.debug("Burst to %s finished: %d/%d sent", topic, sent, self.message_quantity)
        return sent

    # --------------------------------------------------------------------- #
    # Probe is the parameter source
    # --------------------------------------------------------------------- #
    def run_from_channel(self, channel: ControlChannel) -> ActorOutcome:
        self.log.info("Waiting for control messages...")
        while not self.stopped:
            try:
                msg = channel.receive()
            except ChannelClosed:
                self.log.info("Control channel closed, disconnecting")
                self.disconnect()
                return ActorOutcome.PEER_CLOSED

            self.log.debug("Received control message %s", msg)
            if self.apply(msg) is not Applied.DELAY:
                continue
            self.publish_burst(self.template.render(self.state))

        self.disconnect()
        return ActorOutcome.STOPPED

    # --------------------------------------------------------------------- #
    # Driver is the parameter source
    # --------------------------------------------------------------------- #
    def _announce(self, channel: ControlChannel, msg: ControlMessage) -> bool:
        """Adopt ``msg`` locally, then pass it to the Probe."""
        if self.apply(msg) is Applied.SKIPPED:
            return False
        channel.send(msg)
        return True

    def run_plan(self, channel: ControlChannel) -> ActorOutcome:
        sweep = self.config.sweep
        self.log.info("Sweeping %d grid points (settle %.1fs, dwell %.1fs)",
                      len(self.plan), sweep.settle, sweep.dwell)
        halted = row_skipped = False
        try:
            for index, (qos, delay) in enumerate(self.plan):
                if self.stopped:
                    break
                if self.plan.starts_row(index):
                    # a rejected QoS skips its whole row
                    row_skipped = not self._announce(channel, ControlMessage.for_qos(qos))
                    if not row_skipped:
                        self.publish(sweep.qos_topic, str(qos), self.state.current_qos)
                if row_skipped:
                    continue

                if not self._announce(channel, ControlMessage.for_delay(delay)):
                    continue
                if self.sleep(sweep.settle):
                    halted = True
                    break
                self.publish(sweep.delay_topic, str(delay), self.state.current_qos)
                if self.sleep(sweep.dwell):
                    halted = True
                    break
        except ChannelClosed:
            self.log.error("Could not send message to the probe: channel closed")
            self.disconnect()
            return ActorOutcome.PEER_CLOSED

        channel.close()
        self.disconnect()
        if halted or self.stopped:
            return ActorOutcome.STOPPED
        self.log.info("Sweep plan exhausted")
        return ActorOutcome.COMPLETED
