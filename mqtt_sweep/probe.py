"""
Probe: the subscribing actor.

Static mode (configured topics contain no placeholders) subscribes once and
turns requests seen on the control topics into ControlMessages for the
Driver. Templated mode follows the Driver's ControlMessages and re-arms its
subscription on the rendered response topic for every grid point.
"""

from .actor import Actor, ActorOutcome, ActorStatus
from .broker import ConnectOptions, Message, Will
from .control import (QOS_MAX, Applied, ControlChannel, ControlMessage, TopicTemplate,
                      is_templated)
from .exceptions import BrokerError, ChannelClosed
from .policy import retry_reconnect
from .report import StepReport, parse_index

PER_STEP = "per_step"


class Probe(Actor):
    role = "probe"

    def __init__(self, config, link_factory, logger=None, listener=None, sleep=None):
        sub = config.subscriber_connection
        super().__init__(config, link_factory, sub.id,
                         logger=logger, listener=listener, sleep=sleep)
        self.topics = list(sub.topics)
        self.templated = bool(self.topics) and is_templated(self.topics[0])
        self.strategy = sub.strategy
        self.reports: list[StepReport] = []
        self.subscribed: list[str] = []
        self._stream = None

    def connect_options(self) -> ConnectOptions:
        will = Will(topic=self.config.subscriber_connection.will_topic)
        return ConnectOptions.from_config(self.config, will=will)

    def connect(self):
        self.link = self.link_factory(self.client_id, self.log)
        # consume before connecting so nothing delivered right after CONNACK is lost
        self._stream = self.link.start_consuming(self.config.sweep.heartbeat)
        self.link.connect(self.connect_options())
        self.status = ActorStatus.CONNECTED

    def disconnect(self):
        self.unsubscribe()
        super().disconnect()

    def stop(self):
        super().stop()
        if self.link is not None:
            self.link.stop_consuming()

    # --------------------------------------------------------------------- #
    # Subscriptions
    # --------------------------------------------------------------------- #
    def subscribe(self, topics: list[str]):
        """Subscribe at the QoS ceiling so every tested level is delivered."""
        self.link.subscribe_many(topics, [QOS_MAX] * len(topics))
        self.subscribed = list(topics)
        self.status = ActorStatus.SUBSCRIBED

    def unsubscribe(self):
        if self.subscribed and self.link is not None and self.link.is_connected():
            try:
                self.link.unsubscribe_many(self.subscribed)
            except BrokerError as e:
                self.log.warning("Could not unsubscribe from %s: %s", self.subscribed, e)
        self.subscribed = []

    def _attempt_reconnect(self) -> bool:
        if self.stopped:
            return False
        self.link.reconnect()
        return self.link.is_connected()

    def recover(self) -> bool:
        """Run the reconnect policy, then restore the subscriptions."""
        sub = self.config.subscriber_connection
        self.status = ActorStatus.RECONNECTING
        if not retry_reconnect(self._attempt_reconnect, sub.retries,
                               sub.retry_duration / 1000.0,
                               sleep=self.sleep, logger=self.log):
            return False
        if self.subscribed:
            self.log.info("Resubscribing to topics...")
            try:
                self.subscribe(self.subscribed)
            except BrokerError as e:
                self.log.error("Could not resubscribe to %s: %s", self.subscribed, e)
                return False
        else:
            self.status = ActorStatus.CONNECTED
        return True

    def _lost_outcome(self) -> ActorOutcome:
        """Outcome after recovery gave up: a stop request is not a lost link."""
        return ActorOutcome.STOPPED if self.stopped else ActorOutcome.LINK_LOST

    def _log_message(self, msg: Message):
        self.log.info("Received [Message: %s] [Topic: %s] [QoS: %d]",
                      msg.payload_str(), msg.topic, msg.qos)

    # --------------------------------------------------------------------- #
    # Static topics: the Probe is the parameter source (or a plain observer)
    # --------------------------------------------------------------------- #
    def translate(self, msg: Message) -> ControlMessage | None:
        """ControlMessage for a request on a control topic, else None."""
        sweep = self.config.sweep
        if msg.topic not in (sweep.qos_topic, sweep.delay_topic):
            return None
        raw = msg.payload_str().strip()
        try:
            value = int(raw)
        except ValueError:
            self.log.error("Unparseable control payload on %s: %r", msg.topic, raw)
            return None
        if msg.topic == sweep.qos_topic:
            return ControlMessage.for_qos(value)
        return ControlMessage.for_delay(value)

    def run_static(self, channel: ControlChannel | None = None) -> ActorOutcome:
        """
        Subscribe to the configured topics and consume until stopped.

        A failed initial subscription is fatal. With a channel, requests on
        the control topics are forwarded to the Driver.
        """
        self.subscribe(self.topics)
        self.log.info("Processing requests...")
        for msg in self._stream:
            if msg is not None:
                self._log_message(msg)
                control = self.translate(msg) if channel is not None else None
                if control is None:
                    continue
                try:
                    channel.send(control)
                except ChannelClosed:
                    self.log.error("Could not send message to the driver: channel closed")
                    self.disconnect()
                    return ActorOutcome.PEER_CLOSED
                self.log.debug("Forwarded %s", control)
            elif not self.link.is_connected():
                if not self.recover():
                    self.disconnect()
                    return self._lost_outcome()
            elif channel is not None and channel.closed:
                self.log.info("Control channel closed, disconnecting")
                self.disconnect()
                return ActorOutcome.PEER_CLOSED
            if self.stopped:
                break

        self.disconnect()
        return ActorOutcome.STOPPED

    # --------------------------------------------------------------------- #
    # Templated topic: the Driver is the parameter source
    # --------------------------------------------------------------------- #
    def arm(self, topic: str) -> bool:
        """
        Point the subscription at ``topic``. Returns False (step skipped)
        if the broker rejects the subscription.
        """
        if self.strategy == PER_STEP:
            self.disconnect()
            self.connect()
        else:
            self.unsubscribe()
        try:
            self.subscribe([topic])
        except BrokerError as e:
            self.log.error("Could not subscribe to %s: %s", topic, e)
            return False
        return True

    def consume_step(self, topic: str, report: StepReport, channel: ControlChannel) -> bool:
        """
        Consume responses for one grid point.

        The step ends on the final message of the burst, or when the Driver
        has already moved on. Returns False if the link was lost for good.
        """
        final_index = report.expected - 1
        for msg in self._stream:
            if msg is not None:
                self._log_message(msg)
                if msg.topic != topic:
                    continue
                index = parse_index(msg.payload_str())
                report.record(index)
                if index == final_index:
                    report.completed = True
                    return True
            elif not self.link.is_connected():
                if not self.recover():
                    return False
            elif channel.pending or channel.closed:
                self.log.warning("Step qos=%d delay=%d superseded after %d/%d messages",
                                 report.qos, report.delay, report.unique, report.expected)
                return True
            if self.stopped:
                break
        return True

    def run_templated(self, channel: ControlChannel) -> ActorOutcome:
        template = TopicTemplate.first_of(self.topics, "subscriber")
        quantity = self.config.publisher_connection.message_quantity
        while not self.stopped:
            try:
                msg = channel.receive()
            except ChannelClosed:
                self.log.info("Control channel closed, disconnecting")
                self.disconnect()
                return ActorOutcome.PEER_CLOSED

            if self.apply(msg) is not Applied.DELAY:
                continue
            topic = template.render(self.state)
            if not self.arm(topic):
                continue

            report = StepReport(self.state.current_qos, self.state.current_delay, quantity)
            self.reports.append(report)
            self.log.info("Processing responses on %s...", topic)
            if not self.consume_step(topic, report, channel):
                self.disconnect()
                return self._lost_outcome()
            self.log.info("Step qos=%d delay=%d: %d/%d received, loss %.1f%%",
                          report.qos, report.delay, report.unique, report.expected,
                          report.loss_pct)

        self.disconnect()
        return ActorOutcome.STOPPED
