"""
Author: Emmett Butler
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
__all__ = ["ReplicaAssigner"]
import logging

from .exceptions import ValidationError

log = logging.getLogger(__name__)


class ReplicaAssigner(object):
    """Picks replica sets for new partitions so that leadership and replicas
    stay evenly spread over the brokers.

    The per-broker leader and replica counts are seeded once from the
    partitions existing at construction time, and updated by every call to
    :meth:`assign`, so a single assigner should be used for a whole batch of
    new partitions.
    """
    def __init__(self, cluster):
        """
        :param cluster: The cluster whose brokers receive the replicas
        :type cluster: :class:`zkafka.cluster.Cluster`
        """
        self._cluster = cluster
        self.brokers = sorted(cluster.brokers().values(), key=lambda b: b.id)
        self.broker_leaders = dict((broker, 0) for broker in self.brokers)
        self.broker_replicas = dict((broker, 0) for broker in self.brokers)
        for partition in cluster.partitions():
            leader = partition.preferred_leader
            if leader in self.broker_leaders:
                self.broker_leaders[leader] += 1
            for broker in partition.replicas:
                if broker in self.broker_replicas:
                    self.broker_replicas[broker] += 1

    def __repr__(self):
        return "<{module}.{name} at {id_} (brokers={brokers})>".format(
            module=self.__class__.__module__,
            name=self.__class__.__name__,
            id_=hex(id(self)),
            brokers=[b.id for b in self.brokers]
        )

    @property
    def cluster(self):
        return self._cluster

    def cluster_leader_count(self):
        """The number of preferred leaders counted over all brokers"""
        return sum(self.broker_leaders.values())

    def cluster_replica_count(self):
        """The number of replicas counted over all brokers"""
        return sum(self.broker_replicas.values())

    def assign(self, replication_factor):
        """Pick the brokers for one new partition

        :param replication_factor: The number of replicas to place
        :type replication_factor: int
        :returns: list of :class:`zkafka.broker.Broker`, preferred leader first
        """
        if replication_factor <= 0:
            raise ValidationError("replication_factor should be higher than 0")
        if replication_factor > len(self.brokers):
            raise ValidationError(
                "replication_factor should not be higher than the number of brokers "
                "({})".format(len(self.brokers)))

        leader = min(self.brokers, key=lambda b: (self.broker_leaders[b], b.id))
        self.broker_leaders[leader] += 1
        self.broker_replicas[leader] += 1

        others = sorted((b for b in self.brokers if b != leader),
                        key=lambda b: (self.broker_replicas[b], b.id))
        others = others[:replication_factor - 1]
        for broker in others:
            self.broker_replicas[broker] += 1

        replicas = [leader] + others
        log.debug("Assigned replicas %s", [b.id for b in replicas])
        return replicas
