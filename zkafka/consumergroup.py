"""
Author: Emmett Butler, Keith Bourgoin
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
__all__ = ["Consumergroup", "Instance"]
import logging
import socket
from uuid import uuid4

from kazoo.exceptions import NoNodeError, NodeExistsError

from .common import ms_to_datetime
from .exceptions import (ConsumergroupActive, ConsumerInstanceRegistrationFailed,
                         CoordinationError, InconsistentSubscriptions, InvalidSubscription,
                         NoRunningInstances, PartitionAlreadyClaimed, ReleasePartitionFailure)
from .subscription import Subscription
from .utils import get_bytes, get_string
from .utils.error_handlers import ZOOKEEPER_ERRORS, coordination_error
from .watchers import Watch, WatchLoop

log = logging.getLogger(__name__)


class Consumergroup(object):
    """A consumer group coordinated through ZooKeeper

    Nothing is cached: every query reads the group's state under
    /consumers/<name> again.
    """
    def __init__(self, cluster, name):
        """
        :param cluster: The cluster the group consumes from
        :type cluster: :class:`zkafka.cluster.Cluster`
        :param name: The name of the consumer group
        :type name: str
        """
        self._cluster = cluster
        self._name = name

    def __repr__(self):
        return "<{module}.{classname} at {id_} (name={name})>".format(
            module=self.__class__.__module__,
            classname=self.__class__.__name__,
            id_=hex(id(self)),
            name=self._name
        )

    def __eq__(self, other):
        return (isinstance(other, Consumergroup) and
                self._cluster is other._cluster and
                self._name == other._name)

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((id(self._cluster), self._name))

    @property
    def name(self):
        return self._name

    @property
    def cluster(self):
        return self._cluster

    @property
    def path(self):
        return "/consumers/{}".format(self._name)

    @property
    def ids_path(self):
        return "{}/ids".format(self.path)

    @property
    def owners_path(self):
        return "{}/owners".format(self.path)

    @property
    def offsets_path(self):
        return "{}/offsets".format(self.path)

    def _fan_out(self, fn, items, name):
        return self._cluster.handler.fan_out(fn, items,
                                             max_workers=self._cluster.max_workers,
                                             name=name)

    def _children(self, path, watch=None):
        """List the children of `path`, treating a missing node as childless

        When a watch is given and the node is missing, the watch is set on the
        node's creation instead.
        """
        zk = self._cluster.zookeeper
        while True:
            try:
                return zk.get_children(path, watch=watch)
            except NoNodeError:
                if watch is None:
                    return []
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("list", path, e)
            try:
                if zk.exists(path, watch=watch) is None:
                    return []
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("stat", path, e)

    def create(self):
        """Register the group's ids and owners namespaces"""
        self._cluster.recursive_create(self.ids_path)
        self._cluster.recursive_create(self.owners_path)
        self._cluster.reset_metadata()
        log.info("Created consumer group %s", self._name)

    def destroy(self, force=False):
        """Remove everything stored for this group, including offsets

        :param force: Whether to destroy the group even if instances are
            registered
        :type force: bool
        """
        if not force and self.active():
            raise ConsumergroupActive(
                "Consumer group {} still has running instances".format(self._name))
        self._cluster.recursive_delete(self.path)
        self._cluster.reset_metadata()
        log.info("Destroyed consumer group %s", self._name)

    def exists(self):
        try:
            return self._cluster.zookeeper.exists(self.path) is not None
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("stat", self.path, e)

    @property
    def created_at(self):
        """When this group was registered, as an aware UTC datetime"""
        try:
            _, stat = self._cluster.zookeeper.get(self.path)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("read", self.path, e)
        return ms_to_datetime(stat.ctime)

    def instance(self, id_=None, subscription=None):
        """A new consumer instance of this group. Not registered yet."""
        return Instance(self, id_=id_, subscription=subscription)

    def active(self):
        """Whether any instance of this group is registered"""
        return len(self._children(self.ids_path)) > 0

    def instances(self):
        """The registered instances of this group, with their subscriptions

        :returns: list of :class:`zkafka.consumergroup.Instance`
        """
        return self._instances()

    def watch_instances(self, callback=None):
        """The registered instances, and a watch on changes to that list

        :param callback: Called with a :class:`kazoo.protocol.states.WatchedEvent`
            the next time an instance registers or deregisters
        :type callback: callable
        :returns: A tuple of the list of instances and a
            :class:`zkafka.watchers.Watch`
        """
        watch = Watch(self._cluster.handler, callback)
        return self._instances(watch=watch), watch

    def follow_instances(self, callback):
        """Call `callback` with the list of instances now, and again after
            every membership change, until the returned loop is stopped

        :returns: A started :class:`zkafka.watchers.WatchLoop`
        """
        return WatchLoop(self._cluster.handler,
                         lambda watch: self._instances(watch=watch),
                         callback,
                         name="{}: instances".format(self._name)).start()

    def _instances(self, watch=None):
        zk = self._cluster.zookeeper

        def fetch(instance_id):
            path = "{}/{}".format(self.ids_path, instance_id)
            try:
                data, _ = zk.get(path)
            except NoNodeError:
                # deregistered since the listing
                return None
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("read", path, e)
            return Instance(self, instance_id, subscription=Subscription.from_json(data))

        ids = sorted(self._children(self.ids_path, watch=watch))
        return [i for i in self._fan_out(fetch, ids, "instances") if i is not None]

    def instances_with_subscription(self, subscription):
        """The registered instances whose subscription equals `subscription`"""
        subscription = Subscription.build(subscription)
        return [i for i in self.instances() if i.subscription == subscription]

    def subscription(self):
        """The subscription shared by every instance of this group"""
        subscriptions = set(i.subscription for i in self.instances()
                            if i.subscription is not None)
        if not subscriptions:
            raise NoRunningInstances(
                "Consumer group {} has no running instances".format(self._name))
        if len(subscriptions) > 1:
            raise InconsistentSubscriptions(
                "Instances of consumer group {} disagree on the subscription".format(
                    self._name))
        return subscriptions.pop()

    def subscribed_topics(self):
        """The topics of the cluster matched by the group's subscription"""
        return self.subscription().topics(self._cluster)

    topics = subscribed_topics

    def claimed_topics(self):
        """The topics with an owners namespace in this group"""
        return [self._cluster.topic(name)
                for name in sorted(self._children(self.owners_path))]

    def partitions(self):
        """The partitions of every subscribed topic"""
        topic_partitions = self._fan_out(lambda t: t.partitions,
                                         self.subscribed_topics(),
                                         "partitions")
        return [p for partitions in topic_partitions for p in partitions]

    def unclaimed_partitions(self):
        """The subscribed partitions no instance has claimed"""
        claims = self.partition_claims()
        return [p for p in self.partitions() if p not in claims]

    def partition_claims(self):
        """Which instance claimed which partition

        :returns: dict of :class:`zkafka.partition.Partition` to
            :class:`zkafka.consumergroup.Instance`
        """
        zk = self._cluster.zookeeper

        def topic_claims(topic_name):
            topic = self._cluster.topic(topic_name)
            topic_path = "{}/{}".format(self.owners_path, topic_name)

            def partition_claim(partition_id):
                path = "{}/{}".format(topic_path, partition_id)
                try:
                    data, _ = zk.get(path)
                except NoNodeError:
                    # released since the listing
                    return None
                except ZOOKEEPER_ERRORS as e:
                    raise coordination_error("read", path, e)
                return topic.partition(int(partition_id)), Instance(self, get_string(data))

            claims = self._fan_out(partition_claim, self._children(topic_path),
                                   "partition_claims")
            return [c for c in claims if c is not None]

        topic_names = self._children(self.owners_path)
        claims = self._fan_out(topic_claims, topic_names, "topic_claims")
        return dict(claim for topic in claims for claim in topic)

    def watch_partition_claim(self, partition, callback=None):
        """The instance claiming `partition`, and a watch on that claim

        :param callback: Called with a :class:`kazoo.protocol.states.WatchedEvent`
            the next time the claim is made, released or changed
        :type callback: callable
        :returns: A tuple of the claiming
            :class:`zkafka.consumergroup.Instance`, or `None` if the partition
            is unclaimed, and a :class:`zkafka.watchers.Watch`
        """
        watch = Watch(self._cluster.handler, callback)
        return self._partition_claim(partition, watch=watch), watch

    def follow_partition_claim(self, partition, callback):
        """Call `callback` with the claiming instance (or `None`) now, and
            again after every change to the claim, until the returned loop is
            stopped

        :returns: A started :class:`zkafka.watchers.WatchLoop`
        """
        return WatchLoop(self._cluster.handler,
                         lambda watch: self._partition_claim(partition, watch=watch),
                         callback,
                         name="{}: claim {}".format(self._name, partition.key)).start()

    def _partition_claim_path(self, partition):
        return "{}/{}/{}".format(self.owners_path, partition.topic.name, partition.id)

    def _partition_claim(self, partition, watch=None):
        zk = self._cluster.zookeeper
        path = self._partition_claim_path(partition)
        while True:
            try:
                data, _ = zk.get(path, watch=watch)
                return Instance(self, get_string(data))
            except NoNodeError:
                pass
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("read", path, e)
            if watch is None:
                return None
            # a failed read sets no watch, so wait for the claim to appear
            try:
                if zk.exists(path, watch=watch) is None:
                    return None
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("stat", path, e)

    def _offset_path(self, partition):
        return "{}/{}/{}".format(self.offsets_path, partition.topic.name, partition.id)

    def commit_offset(self, partition, offset):
        """Store the offset of the last consumed message of a partition

        Kafka consumers store the offset of the next message to consume, so
        `offset + 1` is written.

        :param partition: The partition the offset belongs to
        :type partition: :class:`zkafka.partition.Partition`
        :param offset: The offset of the last message consumed
        :type offset: int
        """
        zk = self._cluster.zookeeper
        path = self._offset_path(partition)
        data = get_bytes(str(offset + 1))
        try:
            zk.set(path, data)
        except NoNodeError:
            self._cluster.recursive_create(path)
            try:
                zk.set(path, data)
            except ZOOKEEPER_ERRORS as e:
                raise coordination_error("commit offset to", path, e)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("commit offset to", path, e)

    def retrieve_offset(self, partition):
        """The offset of the next message to consume from `partition`, or
            `None` if no offset was committed
        """
        path = self._offset_path(partition)
        try:
            data, _ = self._cluster.zookeeper.get(path)
        except NoNodeError:
            return None
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("read offset from", path, e)
        return int(get_string(data)) if data else None

    def retrieve_all_offsets(self):
        """Every offset stored for this group

        :returns: dict of :class:`zkafka.partition.Partition` to int
        """
        def topic_offsets(topic_name):
            topic = self._cluster.topic(topic_name)
            topic_path = "{}/{}".format(self.offsets_path, topic_name)
            partitions = [topic.partition(int(partition_id))
                          for partition_id in self._children(topic_path)]
            offsets = self._fan_out(self.retrieve_offset, partitions, "retrieve_offset")
            return list(zip(partitions, offsets))

        topic_names = self._children(self.offsets_path)
        offsets = self._fan_out(topic_offsets, topic_names, "retrieve_all_offsets")
        return dict(offset for topic in offsets for offset in topic)

    def retrieve_offsets(self, subscription=None):
        """The stored offsets of every partition matched by a subscription

        Partitions without a committed offset map to `None`.

        :param subscription: Defaults to the group's current subscription
        :type subscription: :class:`zkafka.subscription.Subscription`
        """
        if subscription is None:
            subscription = self.subscription()
        partitions = Subscription.build(subscription).partitions(self._cluster)
        offsets = self._fan_out(self.retrieve_offset, partitions, "retrieve_offsets")
        return dict(zip(partitions, offsets))

    def reset_all_offsets(self):
        """Remove every offset stored for this group"""
        self._cluster.recursive_delete(self.offsets_path)
        log.info("Reset all offsets of consumer group %s", self._name)

    def clean_topic_claims(self, subscription=None):
        """Remove the owners namespaces of topics outside the subscription

        :param subscription: Defaults to the group's current subscription
        :type subscription: :class:`zkafka.subscription.Subscription`
        """
        self._clean_topics(self.owners_path, subscription)

    def clean_stored_offsets(self, subscription=None):
        """Remove the offsets of topics outside the subscription

        :param subscription: Defaults to the group's current subscription
        :type subscription: :class:`zkafka.subscription.Subscription`
        """
        self._clean_topics(self.offsets_path, subscription)

    def _clean_topics(self, path, subscription):
        if subscription is None:
            subscription = self.subscription()
        subscription = Subscription.build(subscription)
        stale = [name for name in self._children(path) if not subscription.has_topic(name)]
        for name in stale:
            log.info("Removing %s/%s from consumer group %s", path, name, self._name)
        self._fan_out(lambda name: self._cluster.recursive_delete("{}/{}".format(path, name)),
                      stale,
                      "clean_topics")


class Instance(object):
    """A member of a consumer group"""
    def __init__(self, consumergroup, id_=None, subscription=None):
        """
        :param consumergroup: The group this instance belongs to
        :type consumergroup: :class:`zkafka.consumergroup.Consumergroup`
        :param id_: The instance id. Defaults to `<hostname>:<uuid>`.
        :type id_: str
        :param subscription: The topics this instance consumes
        :type subscription: :class:`zkafka.subscription.Subscription`
        """
        self._consumergroup = consumergroup
        self._id = id_ if id_ is not None else self.generate_id()
        self._subscription = (Subscription.build(subscription)
                              if subscription is not None else None)

    @classmethod
    def generate_id(cls):
        return "{hostname}:{uuid}".format(hostname=socket.gethostname(), uuid=uuid4())

    def __repr__(self):
        return "<{module}.{name} at {id_} (id={instance_id})>".format(
            module=self.__class__.__module__,
            name=self.__class__.__name__,
            id_=hex(id(self)),
            instance_id=self._id
        )

    def __eq__(self, other):
        return (isinstance(other, Instance) and
                self._consumergroup == other._consumergroup and
                self._id == other._id)

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((self._consumergroup, self._id))

    @property
    def id(self):
        return self._id

    @property
    def consumergroup(self):
        return self._consumergroup

    @property
    def subscription(self):
        return self._subscription

    @property
    def path(self):
        return "{}/{}".format(self._consumergroup.ids_path, self._id)

    @property
    def _zookeeper(self):
        return self._consumergroup.cluster.zookeeper

    def registered(self):
        """Whether this instance's membership node exists"""
        try:
            return self._zookeeper.exists(self.path) is not None
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("stat", self.path, e)

    @property
    def created_at(self):
        """When this instance registered, as an aware UTC datetime"""
        try:
            _, stat = self._zookeeper.get(self.path)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("read", self.path, e)
        return ms_to_datetime(stat.ctime)

    def register(self, subscription=None):
        """Join the consumer group

        Writes an ephemeral membership node holding the subscription, and an
        owners namespace for every subscribed topic.

        :param subscription: The topics to consume. Defaults to the
            subscription this instance was created with.
        :type subscription: :class:`zkafka.subscription.Subscription`
        """
        if subscription is not None:
            subscription = Subscription.build(subscription)
        else:
            subscription = self._subscription
        if subscription is None:
            raise InvalidSubscription("Instance {} has no subscription".format(self._id))

        cluster = self._consumergroup.cluster
        try:
            self._zookeeper.create(self.path,
                                   get_bytes(subscription.to_json()),
                                   ephemeral=True)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("register instance at", self.path, e,
                                     error_cls=ConsumerInstanceRegistrationFailed)

        def create_owners(topic):
            try:
                cluster.recursive_create(
                    "{}/{}".format(self._consumergroup.owners_path, topic.name))
            except CoordinationError as e:
                raise ConsumerInstanceRegistrationFailed(str(e), path=e.path, status=e.status)

        try:
            cluster.handler.fan_out(create_owners, subscription.topics(cluster),
                                    max_workers=cluster.max_workers,
                                    name="register")
        except Exception:
            # a half-registered instance must not count as a member
            self._remove_membership()
            raise
        self._subscription = subscription
        log.info("Registered instance %s of consumer group %s",
                 self._id, self._consumergroup.name)

    def _remove_membership(self):
        try:
            self._zookeeper.delete(self.path)
        except NoNodeError:
            pass
        except ZOOKEEPER_ERRORS as e:
            log.warning("Could not remove membership node %s after a failed registration: %s",
                        self.path, e.__class__.__name__)

    def deregister(self):
        """Leave the consumer group"""
        try:
            self._zookeeper.delete(self.path)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("deregister instance at", self.path, e)
        log.info("Deregistered instance %s of consumer group %s",
                 self._id, self._consumergroup.name)

    def claim_partition(self, partition):
        """Take ownership of a partition for this instance

        Raises :class:`zkafka.exceptions.PartitionAlreadyClaimed` if another
        instance owns it.

        :type partition: :class:`zkafka.partition.Partition`
        """
        path = self._consumergroup._partition_claim_path(partition)
        try:
            self._zookeeper.create(path, value=get_bytes(self._id), ephemeral=True)
        except NodeExistsError:
            raise PartitionAlreadyClaimed(
                partition, "Partition {} is already claimed".format(partition.key))
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("claim", path, e)
        log.debug("Instance %s claimed partition %s", self._id, partition.key)
        return True

    def release_partition(self, partition):
        """Give up ownership of a partition

        :type partition: :class:`zkafka.partition.Partition`
        """
        path = self._consumergroup._partition_claim_path(partition)
        try:
            self._zookeeper.delete(path)
        except ZOOKEEPER_ERRORS as e:
            raise coordination_error("release", path, e, error_cls=ReleasePartitionFailure)
        log.debug("Instance %s released partition %s", self._id, partition.key)
        return True
