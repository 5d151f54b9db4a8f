"""
Author: Keith Bourgoin, Emmett Butler
"""
__license__ = """
Copyright 2015 Parse.ly, Inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""
__all__ = ["Partition"]
import logging
import time

from .exceptions import (BrokerNotFound, CoordinationError, CoordinationTimeout,
                         LeaderNotAvailable, ValidationError)
from .utils import load_json
from .utils.error_handlers import ZOOKEEPER_ERRORS, coordination_error

log = logging.getLogger(__name__)


class Partition(object):
    """
    A Partition is an abstraction over the kafka concept of a partition.
    A kafka partition is a logical division of the logs for a topic. Its
    messages are totally ordered.

    The replica assignment is fixed at construction. The leader and in-sync
    replica set are read from ZooKeeper on first access and kept until
    :meth:`refresh_state` is called.
    """
    def __init__(self, topic, id_, replicas=None):
        """Instantiate a new Partition

        :param topic: The topic to which this Partition belongs
        :type topic: :class:`zkafka.topic.Topic`
        :param id_: The identifier for this partition
        :type id_: int
        :param replicas: The brokers holding a replica of this partition,
            preferred leader first
        :type replicas: list of :class:`zkafka.broker.Broker`
        """
        self._topic = topic
        self._id = int(id_)
        self._replicas = list(replicas) if replicas is not None else []
        self._leader = None
        self._isr = None
        self._state_lock = topic.cluster.handler.Lock()

    def __repr__(self):
        return "<{module}.{name} at {id_} (id={my_id})>".format(
            module=self.__class__.__module__,
            name=self.__class__.__name__,
            id_=hex(id(self)),
            my_id=self._id,
        )

    def __eq__(self, other):
        return (isinstance(other, Partition) and
                self._topic == other._topic and
                self._id == other._id)

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((self._topic, self._id))

    @property
    def id(self):
        """The identifying int for this partition."""
        return self._id

    @property
    def topic(self):
        """The topic to which this partition belongs"""
        return self._topic

    @property
    def cluster(self):
        return self._topic.cluster

    @property
    def replicas(self):
        """The brokers holding a replica of this partition"""
        return self._replicas

    @property
    def key(self):
        """A `topic/partition` label unique within the cluster"""
        return "{}/{}".format(self._topic.name, self._id)

    @property
    def replication_factor(self):
        return len(self._replicas)

    @property
    def preferred_leader(self):
        """The broker that leads this partition when the cluster is balanced"""
        return self._replicas[0] if self._replicas else None

    @property
    def state_path(self):
        return "/brokers/topics/{}/partitions/{}/state".format(self._topic.name, self._id)

    @property
    def leader(self):
        """The broker currently leading this partition"""
        with self._state_lock:
            if self._leader is None:
                self._fetch_state()
            return self._leader

    @property
    def isr(self):
        """The brokers currently in sync with the leader"""
        with self._state_lock:
            if self._isr is None:
                self._fetch_state()
            return self._isr

    @property
    def under_replicated(self):
        """Whether fewer replicas are in sync than are assigned"""
        return len(self.isr) < self.replication_factor

    def refresh_state(self):
        """Re-read the leader and in-sync replicas from ZooKeeper"""
        with self._state_lock:
            self._fetch_state()

    def _fetch_state(self):
        path = self.state_path
        try:
            data, _ = self.cluster.zookeeper.get(path)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("read partition state", path, e)
        self._set_state(load_json(data))

    def _set_state(self, state):
        brokers = self.cluster.brokers()
        leader_id = state['leader']
        if leader_id not in brokers:
            raise LeaderNotAvailable(
                "Partition {} has no live leader (leader={})".format(self.key, leader_id))
        try:
            isr = [brokers[b] for b in state['isr']]
        except KeyError as e:
            raise BrokerNotFound(
                "Partition {} lists unknown broker {} as in sync".format(self.key, e))
        self._leader = brokers[leader_id]
        self._isr = isr

    def wait_for_leader(self, timeout_ms=None, poll_interval_ms=None):
        """Poll ZooKeeper until this partition reports a live leader

        :param timeout_ms: How long to wait before giving up. Defaults to the
            cluster's `leader_wait_timeout_ms`.
        :type timeout_ms: int
        :param poll_interval_ms: How long to sleep between polls. Defaults to
            the cluster's `leader_poll_interval_ms`.
        :type poll_interval_ms: int
        """
        cluster = self.cluster
        if timeout_ms is None:
            timeout_ms = cluster.leader_wait_timeout_ms
        if poll_interval_ms is None:
            poll_interval_ms = cluster.leader_poll_interval_ms
        deadline = time.time() + timeout_ms / 1000
        while True:
            try:
                self.refresh_state()
                return self._leader
            except (LeaderNotAvailable, CoordinationError) as e:
                if time.time() >= deadline:
                    raise CoordinationTimeout(
                        "Partition {} got no leader within {}ms: {}".format(
                            self.key, timeout_ms, e))
                log.debug("Waiting for a leader on %s: %s", self.key, e)
            cluster.handler.sleep(poll_interval_ms / 1000)

    def as_json(self):
        return {'topic': self._topic.name, 'partition': self._id}

    def validate(self):
        if not self._replicas:
            raise ValidationError("No replicas defined for {}".format(self.key))
        if len(set(b.id for b in self._replicas)) != len(self._replicas):
            raise ValidationError("Duplicate replicas assigned to {}".format(self.key))
        return True

    def valid(self):
        try:
            return self.validate()
        except ValidationError:
            return False
