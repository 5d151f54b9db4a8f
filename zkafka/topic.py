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
__all__ = ["Topic"]
import json
import logging
import re
import time

from kazoo.exceptions import NoNodeError, NodeExistsError
from kazoo.protocol.states import EventType

from .broker import Broker
from .exceptions import (CoordinationTimeout, TopicAlreadyExists, TopicMarkedForDeletion,
                         TopicNotFound, ValidationError)
from .partition import Partition
from .replicaassigner import ReplicaAssigner
from .utils import dump_json, get_bytes, load_json
from .utils.error_handlers import ZOOKEEPER_ERRORS, coordination_error, valid_count
from .watchers import Watch

log = logging.getLogger(__name__)

VALID_TOPIC_NAME = re.compile(r'[a-zA-Z0-9._\-]+\Z')
RESERVED_TOPIC_NAMES = ('.', '..')
MAX_TOPIC_NAME_LENGTH = 255


def _config_value(value):
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


class Topic(object):
    """
    A Topic is an abstraction over the kafka concept of a topic.
    It contains a list of partitions with their replica assignment, and the
    per-topic configuration overrides.
    """
    def __init__(self, cluster, name, partitions=None, config=None):
        """Create the Topic from metadata.

        :param cluster: The Cluster to use
        :type cluster: :class:`zkafka.cluster.Cluster`
        :param name: The name of this topic
        :type name: str
        :param partitions: The partitions of this topic. Loaded from ZooKeeper
            on first access if `None`.
        :type partitions: list of :class:`zkafka.partition.Partition`
        :param config: The configuration overrides of this topic. Loaded from
            ZooKeeper on first access if `None`.
        :type config: dict
        """
        self._cluster = cluster
        self._name = name
        self._partitions = partitions
        self._config = config

    def __repr__(self):
        return "<{module}.{classname} at {id_} (name={name})>".format(
            module=self.__class__.__module__,
            classname=self.__class__.__name__,
            id_=hex(id(self)),
            name=self._name
        )

    def __eq__(self, other):
        return (isinstance(other, Topic) and
                self._cluster is other._cluster and
                self._name == other._name)

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((id(self._cluster), self._name))

    @classmethod
    def from_json(cls, cluster, name, payload):
        """Create a Topic from the parsed contents of /brokers/topics/<name>

        :param payload: The parsed JSON replica assignment
        :type payload: dict
        """
        topic = cls(cluster, name)
        topic._partitions = topic._partitions_from_json(payload)
        return topic

    def _partitions_from_json(self, payload):
        brokers = self._cluster.brokers()
        partitions = []
        for partition_id, replica_ids in payload['partitions'].items():
            # replicas may sit on brokers that are down right now
            replicas = [brokers.get(b) or Broker(self._cluster, b, None, None)
                        for b in replica_ids]
            partitions.append(self.partition(int(partition_id), replicas=replicas))
        return sorted(partitions, key=lambda p: p.id)

    @classmethod
    def create(cls, cluster, name, partitions, replication_factor, config=None):
        """Create a new topic, spreading replicas with a
            :class:`zkafka.replicaassigner.ReplicaAssigner`

        Blocks until every partition of the new topic has a leader.

        :param partitions: The number of partitions
        :type partitions: int
        :param replication_factor: The number of replicas of each partition
        :type replication_factor: int
        :param config: Topic configuration overrides
        :type config: dict
        """
        valid_count(partitions, "partitions")
        valid_count(replication_factor, "replication_factor")
        topic = cls(cluster, name, partitions=[], config=config or {})
        topic.validate_name()
        if topic.exists():
            raise TopicAlreadyExists("Topic {} already exists".format(name))
        assigner = ReplicaAssigner(cluster)
        for _ in range(partitions):
            topic.append_partition(assigner.assign(replication_factor))
        topic.save()
        return topic

    @property
    def name(self):
        """The name of this topic"""
        return self._name

    @property
    def cluster(self):
        return self._cluster

    @property
    def path(self):
        return "/brokers/topics/{}".format(self._name)

    @property
    def config_path(self):
        return "/config/topics/{}".format(self._name)

    @property
    def partitions(self):
        """The partitions of this topic, ordered by id"""
        if self._partitions is None:
            self._partitions = self._load_partitions()
        return self._partitions

    @property
    def config(self):
        """The configuration overrides of this topic"""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    @property
    def replication_factor(self):
        """The smallest replication factor of any partition of this topic"""
        return min(p.replication_factor for p in self.partitions)

    @property
    def under_replicated(self):
        return any(p.under_replicated for p in self.partitions)

    def partition(self, id_, replicas=None):
        """A Partition of this topic. Not added to `partitions`."""
        return Partition(self, id_, replicas=replicas)

    def append_partition(self, replicas, id_=None):
        """Add a partition with the given replicas after the existing ones"""
        partitions = self.partitions
        if id_ is None:
            id_ = len(partitions)
        partition = self.partition(id_, replicas=replicas)
        partitions.append(partition)
        return partition

    def exists(self):
        """Whether this topic is registered in ZooKeeper"""
        try:
            return self._cluster.zookeeper.exists(self.path) is not None
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("stat", self.path, e)

    def _load_partitions(self):
        log.debug("Loading partitions of topic %s", self._name)
        try:
            data, _ = self._cluster.zookeeper.get(self.path)
        except NoNodeError:
            raise TopicNotFound("Topic {} does not exist".format(self._name))
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("read partitions of", self.path, e)
        return self._partitions_from_json(load_json(data, versions=(1, )))

    def _load_config(self):
        try:
            data, _ = self._cluster.zookeeper.get(self.config_path)
        except NoNodeError:
            return {}
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("read config of", self.config_path, e)
        return load_json(data, versions=(1, ))['config']

    def partitions_as_json(self):
        """The replica assignment in the /brokers/topics payload format"""
        return {str(p.id): [b.id for b in p.replicas] for p in self.partitions}

    def sequentially_assign_partitions(self, partitions, replication_factor, brokers=None):
        """Replace the partitions of this topic with a round-robin assignment

        :param partitions: The number of partitions to create
        :type partitions: int
        :param replication_factor: The number of replicas of each partition
        :type replication_factor: int
        :param brokers: The brokers to rotate over. Defaults to the first
            `replication_factor` brokers of the cluster.
        :type brokers: list of :class:`zkafka.broker.Broker`
        """
        if brokers is None:
            brokers = sorted(self._cluster.brokers().values(),
                             key=lambda b: b.id)[:replication_factor]
        if len(brokers) < replication_factor:
            raise ValidationError("replication_factor is larger than available brokers")
        self._partitions = []
        for index in range(partitions):
            offset = index % len(brokers)
            rotated = brokers[offset:] + brokers[:offset]
            self.append_partition(rotated[:replication_factor])
        return self._partitions

    def save(self):
        """Write this topic's config and replica assignment to ZooKeeper

        Blocks until every partition has a leader.
        """
        if self.exists():
            raise TopicAlreadyExists("Topic {} already exists".format(self._name))
        self.validate()
        zk = self._cluster.zookeeper
        config_data = dump_json({
            'version': 1,
            'config': {str(k): _config_value(v) for k, v in (self._config or {}).items()}})
        self._cluster.recursive_create("/config/topics")
        created_config = False
        try:
            zk.create(self.config_path, config_data)
            created_config = True
        except NodeExistsError:
            # left behind by an earlier topic of the same name
            try:
                zk.set(self.config_path, config_data)
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("write config of", self.config_path, e)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("create config of", self.config_path, e)

        try:
            zk.create(self.path, dump_json({'version': 1,
                                            'partitions': self.partitions_as_json()}))
        except NodeExistsError:
            raise TopicAlreadyExists("Topic {} already exists".format(self._name))
        except ZOOKEEPER_ERRORS as e:
            if created_config:
                self._remove_config()
            raise coordination_error("create", self.path, e)
        log.info("Created topic %s with %d partitions", self._name, len(self.partitions))

        self._cluster.reset_metadata()
        self.wait_for_partitions()

    def _remove_config(self):
        try:
            self._cluster.zookeeper.delete(self.config_path)
        except NoNodeError:
            pass
        except ZOOKEEPER_ERRORS as e:
            log.warning("Could not remove config node %s of unsaved topic: %s",
                        self.config_path, e.__class__.__name__)

    def add_partitions(self, partitions, replication_factor):
        """Append partitions to this topic

        Blocks until every partition, old and new, has a leader.

        :param partitions: The number of partitions to add
        :type partitions: int
        :param replication_factor: The number of replicas of each new partition
        :type replication_factor: int
        """
        valid_count(partitions, "partitions")
        valid_count(replication_factor, "replication_factor")
        if not self.exists():
            raise TopicNotFound("Topic {} does not exist".format(self._name))

        self._partitions = self._load_partitions()
        assigner = ReplicaAssigner(self._cluster)
        for _ in range(partitions):
            self.append_partition(assigner.assign(replication_factor))
        self.validate()

        try:
            self._cluster.zookeeper.set(
                self.path,
                dump_json({'version': 1, 'partitions': self.partitions_as_json()}))
        except NoNodeError:
            raise TopicNotFound("Topic {} does not exist".format(self._name))
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("write partitions of", self.path, e)
        log.info("Added %d partitions to topic %s", partitions, self._name)

        self._cluster.reset_metadata()
        self.wait_for_partitions()

    def destroy(self, timeout_ms=None):
        """Ask the controller to delete this topic and wait until it is gone

        :param timeout_ms: How long to wait for the deletion. `None` waits
            forever.
        :type timeout_ms: int
        """
        zk = self._cluster.zookeeper
        handler = self._cluster.handler
        watch = Watch(handler)
        try:
            stat = zk.exists(self.path, watch=watch)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("stat", self.path, e)
        if stat is None:
            raise TopicNotFound("Topic {} does not exist".format(self._name))

        marker = "/admin/delete_topics/{}".format(self._name)
        self._cluster.recursive_create("/admin/delete_topics")
        try:
            zk.create(marker)
        except NodeExistsError:
            raise TopicMarkedForDeletion(
                "Topic {} is already marked for deletion".format(self._name))
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("create", marker, e)
        log.info("Marked topic %s for deletion", self._name)

        deadline = None if timeout_ms is None else time.time() + timeout_ms / 1000
        while True:
            remaining = None if deadline is None else max(0, deadline - time.time())
            if not watch.wait(remaining):
                raise CoordinationTimeout(
                    "Topic {} was not deleted within {}ms".format(self._name, timeout_ms))
            if watch.event.type == EventType.DELETED:
                break
            # some other change to the topic node consumed the watch
            watch = Watch(handler)
            try:
                if zk.exists(self.path, watch=watch) is None:
                    break
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("stat", self.path, e)
        log.info("Topic %s deleted", self._name)
        self._cluster.reset_metadata()

    def set_config(self, key, value):
        """Set one configuration override of this topic"""
        config = dict(self._load_config())
        config[str(key)] = _config_value(value)
        self._write_config(config)

    def delete_config(self, key):
        """Remove one configuration override of this topic"""
        config = dict(self._load_config())
        config.pop(str(key), None)
        self._write_config(config)

    def reset_default_config(self):
        """Remove every configuration override of this topic"""
        self._write_config({})

    def _write_config(self, config):
        if not self.exists():
            raise TopicNotFound("Topic {} does not exist".format(self._name))
        config = {str(k): _config_value(v) for k, v in config.items()}
        data = dump_json({'version': 1, 'config': config})
        zk = self._cluster.zookeeper
        try:
            zk.set(self.config_path, data)
        except NoNodeError:
            self._cluster.recursive_create("/config/topics")
            try:
                zk.create(self.config_path, data)
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("create config of", self.config_path, e)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("write config of", self.config_path, e)

        # brokers only pick up the new config through a change notification
        self._cluster.recursive_create("/config/changes")
        try:
            zk.create("/config/changes/config_change_",
                      get_bytes(json.dumps(self._name)),
                      sequence=True)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("notify config change for", self.config_path, e)
        log.info("Updated config of topic %s: %s", self._name, config)
        self._config = config
        self._cluster.reset_metadata()

    def wait_for_partitions(self):
        """Block until every partition of this topic has a leader"""
        self._cluster.handler.fan_out(lambda p: p.wait_for_leader(),
                                      self.partitions,
                                      max_workers=self._cluster.max_workers,
                                      name="wait_for_partitions")

    def validate_name(self):
        if not VALID_TOPIC_NAME.match(self._name) or self._name in RESERVED_TOPIC_NAMES:
            raise ValidationError("{!r} is not a valid topic name".format(self._name))
        if len(self._name) > MAX_TOPIC_NAME_LENGTH:
            raise ValidationError("Topic name {!r} is too long".format(self._name))

    def validate(self):
        self.validate_name()
        if not self.partitions:
            raise ValidationError("Topic {} has no partitions defined".format(self._name))
        for partition in self.partitions:
            partition.validate()
        return True

    def valid(self):
        try:
            return self.validate()
        except ValidationError:
            return False
