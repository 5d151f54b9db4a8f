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
__all__ = ["Broker"]
import logging

from .exceptions import VersionNotSupported

log = logging.getLogger(__name__)

SUPPORTED_VERSIONS = (1, 2, 3, 4, 5)


class Broker(object):
    """
    A Broker is a single member of a Kafka cluster, as registered in
    ZooKeeper under /brokers/ids.
    """
    def __init__(self, cluster, id_, host, port, jmx_port=None):
        """Create a Broker instance.

        :param cluster: The cluster this broker belongs to
        :type cluster: :class:`zkafka.cluster.Cluster`
        :param id_: The id number of this broker
        :type id_: int
        :param host: The host address to which to connect. `None` for
            brokers referenced by a replica assignment but not registered.
        :type host: str
        :param port: The port on which to connect
        :type port: int
        :param jmx_port: The port on which the broker exposes JMX, if any
        :type jmx_port: int
        """
        self._cluster = cluster
        self._id = int(id_)
        self._host = host
        self._port = port
        self._jmx_port = jmx_port

    @classmethod
    def from_json(cls, cluster, id_, payload):
        """Create a Broker from the parsed contents of /brokers/ids/<id>

        :param payload: The parsed JSON registration payload
        :type payload: dict
        """
        if payload.get('version') not in SUPPORTED_VERSIONS:
            raise VersionNotSupported(
                "Broker {} registered with unsupported version {}".format(
                    id_, payload.get('version')))
        host, port = payload.get('host'), payload.get('port')
        if host is None and payload.get('endpoints'):
            # brokers listening only on non-PLAINTEXT listeners leave host empty
            host, _, port = payload['endpoints'][0].split('://', 1)[1].rpartition(':')
        jmx_port = payload.get('jmx_port')
        return cls(cluster,
                   id_,
                   host,
                   int(port) if port is not None else None,
                   jmx_port=jmx_port if jmx_port is not None and jmx_port >= 0 else None)

    def __repr__(self):
        return "<{module}.{name} at {id_} (host={host}, port={port}, id={my_id})>".format(
            module=self.__class__.__module__,
            name=self.__class__.__name__,
            id_=hex(id(self)),
            host=self._host,
            port=self._port,
            my_id=self._id
        )

    def __eq__(self, other):
        return (isinstance(other, Broker) and
                self._cluster is other._cluster and
                self._id == other._id)

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((id(self._cluster), self._id))

    @property
    def cluster(self):
        """The cluster this broker belongs to"""
        return self._cluster

    @property
    def id(self):
        """The broker's ID within the Kafka cluster"""
        return self._id

    @property
    def host(self):
        """The host to which this broker is bound"""
        return self._host

    @property
    def port(self):
        """The port where the broker is available"""
        return self._port

    @property
    def jmx_port(self):
        """The port where the broker exposes JMX, or `None`"""
        return self._jmx_port

    @property
    def addr(self):
        """The `host:port` address of this broker"""
        return "{}:{}".format(self._host, self._port)

    @property
    def registered(self):
        """Whether this broker is currently registered in /brokers/ids"""
        return self._id in self._cluster.brokers()

    def led_partitions(self):
        """The partitions in the cluster currently led by this broker"""
        partitions = self._cluster.partitions()
        leads = self._cluster.handler.fan_out(
            lambda p: p.leader == self, partitions,
            max_workers=self._cluster.max_workers, name="led_partitions")
        return [p for p, led in zip(partitions, leads) if led]

    def replicated_partitions(self):
        """The partitions in the cluster that list this broker as a replica"""
        return [p for p in self._cluster.partitions() if self in p.replicas]

    def critical(self, replicas=1):
        """Whether taking this broker down would leave a partition short of replicas

        A broker is critical if, for some partition it replicates, the in-sync
        replica set without this broker has fewer than `replicas` members.

        :param replicas: The minimum number of in-sync replicas that must remain
        :type replicas: int
        """
        partitions = self.replicated_partitions()
        shortfalls = self._cluster.handler.fan_out(
            lambda p: len([b for b in p.isr if b != self]) < replicas,
            partitions,
            max_workers=self._cluster.max_workers,
            name="critical")
        return any(shortfalls)
