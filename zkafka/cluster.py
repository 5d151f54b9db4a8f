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
__all__ = ["Cluster"]
import logging
import posixpath

from kazoo.client import KazooClient
from kazoo.exceptions import NoNodeError, NodeExistsError
try:
    from kazoo.handlers.gevent import SequentialGeventHandler
except ImportError:
    SequentialGeventHandler = None

from .broker import Broker
from .common import TopicPreload
from .consumergroup import Consumergroup
from .exceptions import BrokerNotFound, LeaderElectionInProgress, NoClusterRegistered
from .handlers import GEventHandler, ThreadingHandler
from .topic import Topic
from .utils import dump_json, load_json
from .utils.error_handlers import ZOOKEEPER_ERRORS, coordination_error, valid_int

log = logging.getLogger(__name__)


class Cluster(object):
    """
    A Cluster is a high-level abstraction of the collection of brokers and
    topics that makes up a real kafka cluster, as registered in ZooKeeper.

    Brokers and topics are read from ZooKeeper on first access and cached.
    The caches are dropped by :meth:`reset_metadata`, by every write that
    changes the cluster's topology, and when ZooKeeper reports that brokers
    or topics were added or removed.
    """
    def __init__(self,
                 zookeeper_hosts='127.0.0.1:2181',
                 zookeeper=None,
                 handler=None,
                 use_greenlets=False,
                 zookeeper_connection_timeout_ms=6 * 1000,
                 max_workers=8,
                 leader_wait_timeout_ms=30 * 1000,
                 leader_poll_interval_ms=100):
        """Create a new Cluster instance.

        :param zookeeper_hosts: KazooClient-formatted string of ZooKeeper hosts to
            which to connect, optionally followed by a chroot path
        :type zookeeper_hosts: str
        :param zookeeper: A started KazooClient to use instead of opening a
            connection to `zookeeper_hosts`. It is not closed by :meth:`close`.
        :type zookeeper: :class:`kazoo.client.KazooClient`
        :param handler: The concurrency handler for fan-out work and watches
        :type handler: :class:`zkafka.handlers.Handler`
        :param use_greenlets: Whether to use greenlets instead of threads when
            no `handler` is given
        :type use_greenlets: bool
        :param zookeeper_connection_timeout_ms: The maximum time (in
            milliseconds) to wait for the ZooKeeper session to start
        :type zookeeper_connection_timeout_ms: int
        :param max_workers: The maximum number of concurrent ZooKeeper requests
            issued by a single operation
        :type max_workers: int
        :param leader_wait_timeout_ms: How long (in milliseconds) topic creation
            waits for every partition to elect a leader
        :type leader_wait_timeout_ms: int
        :param leader_poll_interval_ms: How often (in milliseconds) partition
            state is polled while waiting for a leader
        :type leader_poll_interval_ms: int
        """
        if handler is None:
            if use_greenlets and GEventHandler is None:
                raise ImportError("use_greenlets requires gevent to be installed")
            handler = GEventHandler() if use_greenlets else ThreadingHandler()
        self._handler = handler
        self._zookeeper_hosts = zookeeper_hosts
        self._zookeeper_connection_timeout_ms = valid_int(zookeeper_connection_timeout_ms)
        self._max_workers = valid_int(max_workers)
        self._leader_wait_timeout_ms = valid_int(leader_wait_timeout_ms)
        self._leader_poll_interval_ms = valid_int(leader_poll_interval_ms)
        self._zookeeper = zookeeper
        self._owns_zookeeper = zookeeper is None
        self._zookeeper_lock = handler.Lock()
        self._brokers = None
        self._brokers_generation = 0
        self._brokers_lock = handler.Lock()
        self._topics = None
        self._topics_generation = 0
        self._topics_lock = handler.Lock()
        self._consumergroups = None
        self._consumergroups_lock = handler.Lock()

    def __repr__(self):
        return "<{module}.{name} at {id_} (zookeeper_hosts={hosts})>".format(
            module=self.__class__.__module__,
            name=self.__class__.__name__,
            id_=hex(id(self)),
            hosts=self._zookeeper_hosts,
        )

    @property
    def handler(self):
        """The concurrency handler for fan-out work and watches"""
        return self._handler

    @property
    def max_workers(self):
        return self._max_workers

    @property
    def leader_wait_timeout_ms(self):
        return self._leader_wait_timeout_ms

    @property
    def leader_poll_interval_ms(self):
        return self._leader_poll_interval_ms

    @property
    def zookeeper(self):
        """The KazooClient used to talk to ZooKeeper, connected on first use"""
        with self._zookeeper_lock:
            if self._zookeeper is None:
                self._zookeeper = self._setup_zookeeper()
            return self._zookeeper

    def _setup_zookeeper(self):
        kazoo_kwargs = {}
        if GEventHandler and isinstance(self._handler, GEventHandler):
            kazoo_kwargs['handler'] = SequentialGeventHandler()
        log.info("Connecting to ZooKeeper at %s", self._zookeeper_hosts)
        zookeeper = KazooClient(self._zookeeper_hosts, **kazoo_kwargs)
        zookeeper.start(timeout=self._zookeeper_connection_timeout_ms / 1000)
        return zookeeper

    def close(self):
        """Drop cached metadata and close the ZooKeeper connection, if we opened it"""
        with self._zookeeper_lock:
            zookeeper = self._zookeeper
            if self._owns_zookeeper:
                self._zookeeper = None
        if zookeeper is not None and self._owns_zookeeper:
            log.info("Closing ZooKeeper connection to %s", self._zookeeper_hosts)
            zookeeper.stop()
            zookeeper.close()
        self.reset_metadata()

    def reset_metadata(self):
        """Forget cached brokers, topics and consumer groups"""
        with self._brokers_lock:
            self._brokers_generation += 1
            self._brokers = None
        with self._topics_lock:
            self._topics_generation += 1
            self._topics = None
        with self._consumergroups_lock:
            self._consumergroups = None

    def brokers(self):
        """The brokers registered in this cluster

        :returns: dict of broker id to :class:`zkafka.broker.Broker`
        """
        with self._brokers_lock:
            if self._brokers is not None:
                return self._brokers
            generation = self._brokers_generation
        brokers = self._fetch_brokers()
        with self._brokers_lock:
            # a change notification during the fetch makes the result stale
            if generation == self._brokers_generation:
                self._brokers = brokers
        return brokers

    def broker(self, id_):
        """The registered broker with the given id"""
        try:
            return self.brokers()[id_]
        except KeyError:
            raise BrokerNotFound("Broker {} is not registered".format(id_))

    def _fetch_brokers(self):
        zk = self.zookeeper
        try:
            broker_ids = zk.get_children("/brokers/ids", watch=self._brokers_changed)
        except NoNodeError:
            raise NoClusterRegistered(
                "No Kafka cluster registered on ZooKeeper at {}".format(self._zookeeper_hosts))
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("list", "/brokers/ids", e)

        def fetch(broker_id):
            path = "/brokers/ids/{}".format(broker_id)
            try:
                data, _ = zk.get(path)
            except NoNodeError:
                # deregistered since the listing
                return None
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("read", path, e)
            return Broker.from_json(self, int(broker_id), load_json(data))

        fetched = self._handler.fan_out(fetch, broker_ids,
                                        max_workers=self._max_workers,
                                        name="fetch_brokers")
        brokers = dict((b.id, b) for b in fetched if b is not None)
        log.debug("Discovered %d brokers", len(brokers))
        return brokers

    def _brokers_changed(self, event):
        log.debug("Broker registrations changed: %s", event)
        with self._brokers_lock:
            self._brokers_generation += 1
            self._brokers = None

    def topics(self, preload=TopicPreload.DEFAULT):
        """The topics of this cluster

        :param preload: The topic attributes to read from ZooKeeper right away,
            from :class:`zkafka.common.TopicPreload`. Only used when the
            topics are not cached yet.
        :type preload: Iterable of str
        :returns: dict of topic name to :class:`zkafka.topic.Topic`
        """
        with self._topics_lock:
            if self._topics is not None:
                return self._topics
            generation = self._topics_generation
        topics = self._fetch_topics(preload)
        with self._topics_lock:
            if generation == self._topics_generation:
                self._topics = topics
        return topics

    def _fetch_topics(self, preload):
        try:
            names = self.zookeeper.get_children("/brokers/topics", watch=self._topics_changed)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("list", "/brokers/topics", e)

        def load(name):
            topic = Topic(self, name)
            if TopicPreload.PARTITIONS in preload:
                topic.partitions
            if TopicPreload.CONFIG in preload:
                topic.config
            return topic

        fetched = self._handler.fan_out(load, names,
                                        max_workers=self._max_workers,
                                        name="fetch_topics")
        topics = dict((t.name, t) for t in fetched)
        log.debug("Discovered %d topics", len(topics))
        return topics

    def _topics_changed(self, event):
        log.debug("Topics changed: %s", event)
        with self._topics_lock:
            self._topics_generation += 1
            self._topics = None

    def topic(self, name):
        """The topic with the given name

        The returned topic may not exist yet; see :meth:`zkafka.topic.Topic.exists`.
        """
        return Topic(self, name)

    def partitions(self):
        """All the partitions of all the topics of this cluster"""
        return [p for t in self.topics().values() for p in t.partitions]

    def under_replicated(self):
        """Whether any partition of the cluster has fewer in-sync replicas than
            replicas
        """
        return any(p.under_replicated for p in self.partitions())

    def create_topic(self, name, partitions, replication_factor, config=None):
        """Create a topic and wait until all its partitions have a leader

        :param name: The name of the topic
        :type name: str
        :param partitions: The number of partitions
        :type partitions: int
        :param replication_factor: The number of replicas of each partition
        :type replication_factor: int
        :param config: Topic configuration overrides
        :type config: dict
        """
        return Topic.create(self, name, partitions, replication_factor, config=config)

    def preferred_leader_election(self, partitions=None):
        """Ask the controller to move leadership back to the preferred replicas

        :param partitions: The partitions to rebalance. Defaults to all of them.
        :type partitions: Iterable of :class:`zkafka.partition.Partition`
        """
        if partitions is None:
            partitions = self.partitions()
        path = "/admin/preferred_replica_election"
        data = dump_json({'version': 1, 'partitions': [p.as_json() for p in partitions]})
        try:
            self.zookeeper.create(path, data)
        except NodeExistsError:
            raise LeaderElectionInProgress(
                "Another preferred leader election is still in progress")
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("create", path, e)
        log.info("Requested preferred leader election")

    def consumergroups(self):
        """The consumer groups registered in this cluster"""
        with self._consumergroups_lock:
            if self._consumergroups is not None:
                return self._consumergroups
        try:
            names = self.zookeeper.get_children("/consumers")
        except NoNodeError:
            names = []
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("list", "/consumers", e)
        groups = [Consumergroup(self, name) for name in sorted(names)]
        with self._consumergroups_lock:
            self._consumergroups = groups
        return groups

    def consumergroup(self, name):
        return Consumergroup(self, name)

    def recursive_create(self, path):
        """Create a znode and all its missing ancestors"""
        if path in ('', '/'):
            return
        zk = self.zookeeper
        try:
            if zk.exists(path) is not None:
                return
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("stat", path, e)
        self.recursive_create(posixpath.dirname(path))
        try:
            zk.create(path)
        except NodeExistsError:
            pass
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("create", path, e)

    def recursive_delete(self, path):
        """Delete a znode after deleting all its descendants

        The children of every node are deleted concurrently. A node that is
        already gone counts as deleted.
        """
        zk = self.zookeeper
        try:
            children = zk.get_children(path)
        except NoNodeError:
            return
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("list", path, e)
        self._handler.fan_out(lambda child: self.recursive_delete(posixpath.join(path, child)),
                              children,
                              max_workers=self._max_workers,
                              name="recursive_delete")
        try:
            zk.delete(path)
        except NoNodeError:
            pass
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("delete", path, e)

