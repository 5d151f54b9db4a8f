import datetime as dt
import queue
import unittest

from kazoo.exceptions import ConnectionLoss
from kazoo.protocol.states import EventType

from zkafka import Consumergroup, Instance, Subscription
from zkafka.exceptions import (ConsumergroupActive, ConsumerInstanceRegistrationFailed,
                               CoordinationError, InconsistentSubscriptions,
                               InvalidSubscription, NoRunningInstances,
                               PartitionAlreadyClaimed, ReleasePartitionFailure)

from tests.zkafka import mock_cluster


class ConsumergroupTests(unittest.TestCase):
    def setUp(self):
        self.cluster = mock_cluster()
        self.zookeeper = self.cluster.zookeeper
        self.group = self.cluster.consumergroup("test.group")
        self.group.create()
        self.subscription = Subscription.static(["test.1", "test.4"])
        self.test1 = self.cluster.topics()["test.1"]
        self.test4 = self.cluster.topics()["test.4"]

    def register(self, id_, subscription=None):
        instance = self.group.instance(id_, subscription or self.subscription)
        instance.register()
        return instance

    def test_paths(self):
        self.assertEqual(self.group.path, "/consumers/test.group")
        self.assertEqual(self.group.ids_path, "/consumers/test.group/ids")
        self.assertEqual(self.group.owners_path, "/consumers/test.group/owners")
        self.assertEqual(self.group.offsets_path, "/consumers/test.group/offsets")

    def test_create_and_destroy(self):
        self.assertTrue(self.group.exists())
        self.assertIsNotNone(self.zookeeper.exists(self.group.owners_path))
        self.assertIsNotNone(self.group.created_at)
        self.group.destroy()
        self.assertFalse(self.group.exists())
        self.group.destroy()

    def test_create_and_destroy_refresh_cluster_groups(self):
        self.assertEqual([g.name for g in self.cluster.consumergroups()], ["test.group"])
        other = self.cluster.consumergroup("other.group")
        other.create()
        self.assertEqual([g.name for g in self.cluster.consumergroups()],
                         ["other.group", "test.group"])
        self.group.destroy()
        self.assertEqual(self.cluster.consumergroups(), [other])

    def test_created_at_is_creation_time(self):
        self.zookeeper._nodes[self.group.path].ctime = 1500
        self.assertEqual(self.group.created_at,
                         dt.datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=dt.timezone.utc))
        self.zookeeper.set(self.group.path, b"changed")
        self.assertEqual(self.group.created_at,
                         dt.datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=dt.timezone.utc))
        instance = self.register("a")
        self.zookeeper._nodes[instance.path].ctime = 2000
        self.assertEqual(instance.created_at,
                         dt.datetime(1970, 1, 1, 0, 0, 2, tzinfo=dt.timezone.utc))

    def test_destroy_active_group(self):
        self.register("a")
        with self.assertRaises(ConsumergroupActive):
            self.group.destroy()
        self.assertTrue(self.group.exists())
        self.group.destroy(force=True)
        self.assertFalse(self.group.exists())

    def test_equality(self):
        self.assertEqual(self.group, Consumergroup(self.cluster, "test.group"))
        self.assertNotEqual(self.group, Consumergroup(self.cluster, "other"))
        self.assertEqual(self.group.instance("a"), Instance(self.group, "a"))
        self.assertNotEqual(self.group.instance("a"), self.group.instance("b"))

    def test_generated_instance_ids_are_unique(self):
        self.assertNotEqual(self.group.instance().id, self.group.instance().id)
        self.assertIn(":", self.group.instance().id)

    def test_register(self):
        self.assertFalse(self.group.active())
        instance = self.register("a")
        self.assertTrue(instance.registered())
        self.assertTrue(self.group.active())
        self.assertIsNotNone(instance.created_at)
        stored = Subscription.from_json(self.zookeeper.get(instance.path)[0])
        self.assertEqual(stored, self.subscription)
        self.assertEqual(sorted(self.zookeeper.get_children(self.group.owners_path)),
                         ["test.1", "test.4"])
        self.assertEqual(self.group.instances(), [instance])
        self.assertEqual(self.group.instances()[0].subscription, self.subscription)

    def test_register_twice(self):
        self.register("a")
        with self.assertRaises(ConsumerInstanceRegistrationFailed):
            self.register("a")

    def test_register_without_subscription(self):
        with self.assertRaises(InvalidSubscription):
            self.group.instance("a").register()

    def test_register_owners_failure(self):
        self.zookeeper.failures[('create', '/consumers/test.group/owners/test.4')] = \
            ConnectionLoss()
        instance = self.group.instance("a")
        with self.assertRaises(ConsumerInstanceRegistrationFailed) as context:
            instance.register(self.subscription)
        self.assertEqual(context.exception.status, "ConnectionLoss")
        self.assertFalse(instance.registered())
        self.assertIsNone(instance.subscription)
        self.assertFalse(self.group.active())
        self.group.destroy()

    def test_register_again_after_failure(self):
        self.zookeeper.failures[('create', '/consumers/test.group/owners/test.4')] = \
            ConnectionLoss()
        instance = self.group.instance("a", self.subscription)
        with self.assertRaises(ConsumerInstanceRegistrationFailed):
            instance.register()
        self.assertEqual(instance.subscription, self.subscription)
        instance.register()
        self.assertTrue(instance.registered())
        self.assertEqual(self.group.subscription(), self.subscription)

    def test_deregister(self):
        instance = self.register("a")
        instance.deregister()
        self.assertFalse(instance.registered())
        self.assertEqual(self.group.instances(), [])
        with self.assertRaises(CoordinationError):
            instance.deregister()

    def test_session_expiry_deregisters(self):
        self.register("a")
        self.zookeeper.expire_session()
        self.assertFalse(self.group.active())

    def test_subscription(self):
        with self.assertRaises(NoRunningInstances):
            self.group.subscription()
        a = self.register("a")
        self.register("b")
        self.assertEqual(self.group.subscription(), self.subscription)
        self.register("c", Subscription.static(["test.1"]))
        with self.assertRaises(InconsistentSubscriptions):
            self.group.subscription()
        self.assertEqual(
            sorted(i.id for i in self.group.instances_with_subscription(self.subscription)),
            ["a", "b"])
        self.group.instance("c").deregister()
        a.deregister()
        self.assertEqual(self.group.subscription(), self.subscription)

    def test_topics_and_partitions(self):
        self.register("a", Subscription.pattern(r"\.4$"))
        self.assertEqual([t.name for t in self.group.subscribed_topics()], ["test.4"])
        self.assertEqual([t.name for t in self.group.topics()], ["test.4"])
        self.assertEqual([t.name for t in self.group.claimed_topics()], ["test.4"])
        self.assertEqual([p.key for p in self.group.partitions()],
                         ["test.4/0", "test.4/1", "test.4/2", "test.4/3"])

    def test_claim_partition(self):
        a = self.register("a")
        b = self.register("b")
        partition = self.test4.partition(2)
        self.assertTrue(a.claim_partition(partition))
        with self.assertRaises(PartitionAlreadyClaimed) as context:
            b.claim_partition(partition)
        self.assertEqual(context.exception.partition, partition)
        self.assertEqual(self.zookeeper.get(
            "/consumers/test.group/owners/test.4/2")[0], b"a")
        self.assertTrue(a.release_partition(partition))
        self.assertTrue(b.claim_partition(partition))

    def test_release_unclaimed_partition(self):
        a = self.register("a")
        with self.assertRaises(ReleasePartitionFailure) as context:
            a.release_partition(self.test1.partition(0))
        self.assertEqual(context.exception.status, "NoNodeError")

    def test_partition_claims(self):
        a = self.register("a")
        b = self.register("b")
        a.claim_partition(self.test1.partition(0))
        a.claim_partition(self.test4.partition(1))
        b.claim_partition(self.test4.partition(3))
        claims = self.group.partition_claims()
        self.assertEqual(claims, {self.test1.partition(0): a,
                                  self.test4.partition(1): a,
                                  self.test4.partition(3): b})
        self.assertEqual(sorted(p.key for p in self.group.unclaimed_partitions()),
                         ["test.4/0", "test.4/2"])

    def test_claims_released_on_session_expiry(self):
        a = self.register("a")
        a.claim_partition(self.test1.partition(0))
        self.zookeeper.expire_session()
        self.assertEqual(self.group.partition_claims(), {})

    def test_offsets(self):
        partition = self.test4.partition(1)
        self.assertIsNone(self.group.retrieve_offset(partition))
        self.group.commit_offset(partition, 1234)
        self.assertEqual(self.group.retrieve_offset(partition), 1235)
        self.group.commit_offset(partition, 2000)
        self.assertEqual(self.group.retrieve_offset(partition), 2001)
        self.group.reset_all_offsets()
        self.assertIsNone(self.group.retrieve_offset(partition))

    def test_commit_offset_failure(self):
        partition = self.test4.partition(1)
        path = "/consumers/test.group/offsets/test.4/1"
        self.zookeeper.failures[('set', path)] = ConnectionLoss()
        with self.assertRaises(CoordinationError) as context:
            self.group.commit_offset(partition, 1)
        self.assertEqual(context.exception.path, path)

    def test_retrieve_all_offsets(self):
        self.assertEqual(self.group.retrieve_all_offsets(), {})
        self.group.commit_offset(self.test1.partition(0), 9)
        self.group.commit_offset(self.test4.partition(3), 99)
        self.assertEqual(self.group.retrieve_all_offsets(), {
            self.test1.partition(0): 10,
            self.test4.partition(3): 100})

    def test_retrieve_offsets(self):
        self.group.commit_offset(self.test4.partition(0), 5)
        self.group.commit_offset(self.test1.partition(0), 7)
        offsets = self.group.retrieve_offsets(Subscription.static(["test.4"]))
        self.assertEqual(offsets, {self.test4.partition(0): 6,
                                   self.test4.partition(1): None,
                                   self.test4.partition(2): None,
                                   self.test4.partition(3): None})
        self.register("a", Subscription.static(["test.1"]))
        self.assertEqual(self.group.retrieve_offsets(), {self.test1.partition(0): 8})

    def test_clean_topic_claims(self):
        self.register("a")
        self.zookeeper.ensure_path("/consumers/test.group/owners/gone/0")
        self.group.clean_topic_claims()
        self.assertEqual(sorted(self.zookeeper.get_children(self.group.owners_path)),
                         ["test.1", "test.4"])
        self.group.clean_topic_claims(Subscription.static(["test.4"]))
        self.assertEqual(self.zookeeper.get_children(self.group.owners_path), ["test.4"])

    def test_clean_stored_offsets(self):
        self.group.commit_offset(self.test1.partition(0), 1)
        self.group.commit_offset(self.test4.partition(0), 1)
        self.group.clean_stored_offsets(Subscription.pattern(r"\.4$"))
        self.assertEqual(self.zookeeper.get_children(self.group.offsets_path), ["test.4"])
        with self.assertRaises(NoRunningInstances):
            self.group.clean_stored_offsets()

    def test_watch_instances(self):
        events = []
        instances, watch = self.group.watch_instances(events.append)
        self.assertEqual(instances, [])
        self.assertFalse(watch.completed)
        self.register("a")
        self.assertTrue(watch.wait(1))
        self.assertEqual(events[0].type, EventType.CHILD)
        self.assertEqual(watch.event, events[0])

    def test_watch_instances_of_missing_group(self):
        group = self.cluster.consumergroup("new.group")
        instances, watch = group.watch_instances()
        self.assertEqual(instances, [])
        group.create()
        self.assertTrue(watch.wait(1))
        self.assertEqual(watch.event.type, EventType.CREATED)

    def test_watch_does_not_fire_without_change(self):
        _, watch = self.group.watch_instances()
        self.assertFalse(watch.wait(0.05))

    def test_follow_instances(self):
        updates = queue.Queue()
        loop = self.group.follow_instances(
            lambda instances: updates.put(sorted(i.id for i in instances)))
        try:
            self.assertEqual(updates.get(timeout=1), [])
            a = self.register("a")
            self.assertEqual(updates.get(timeout=1), ["a"])
            self.register("b")
            self.assertEqual(updates.get(timeout=1), ["a", "b"])
            a.deregister()
            self.assertEqual(updates.get(timeout=1), ["b"])
            self.assertTrue(loop.running)
        finally:
            loop.stop(timeout=1)
        self.assertFalse(loop.running)

    def test_follow_instances_failure(self):
        updates = queue.Queue()
        loop = self.group.follow_instances(updates.put)
        self.assertEqual(updates.get(timeout=1), [])
        self.zookeeper.failures[('get_children', self.group.ids_path)] = ConnectionLoss()
        self.register("a")
        with self.assertRaises(CoordinationError):
            loop.join(timeout=1)
        self.assertFalse(loop.running)

    def test_watch_partition_claim(self):
        a = self.register("a")
        partition = self.test4.partition(0)
        owner, watch = self.group.watch_partition_claim(partition)
        self.assertIsNone(owner)
        a.claim_partition(partition)
        self.assertTrue(watch.wait(1))
        self.assertEqual(watch.event.type, EventType.CREATED)

        owner, watch = self.group.watch_partition_claim(partition)
        self.assertEqual(owner, a)
        a.release_partition(partition)
        self.assertTrue(watch.wait(1))
        self.assertEqual(watch.event.type, EventType.DELETED)

    def test_follow_partition_claim(self):
        a = self.register("a")
        b = self.register("b")
        partition = self.test1.partition(0)
        updates = queue.Queue()
        loop = self.group.follow_partition_claim(partition, updates.put)
        try:
            self.assertIsNone(updates.get(timeout=1))
            a.claim_partition(partition)
            self.assertEqual(updates.get(timeout=1), a)
            a.release_partition(partition)
            self.assertIsNone(updates.get(timeout=1))
            b.claim_partition(partition)
            self.assertEqual(updates.get(timeout=1), b)
        finally:
            loop.stop(timeout=1)


if __name__ == "__main__":
    unittest.main()
