from zkafka import Cluster

from .fakezookeeper import FakeKafkaZooKeeper


def mock_cluster(zookeeper=None, **kwargs):
    """A Cluster backed by an in-memory ZooKeeper holding three brokers and
    the topics `test.1` (one partition) and `test.4` (four partitions)

    Partition `test.4/3` is under-replicated: broker 3 dropped out of its
    in-sync replica set.
    """
    if zookeeper is None:
        zookeeper = FakeKafkaZooKeeper()
    for broker_id in (1, 2, 3):
        zookeeper.register_broker(broker_id, host="example.com")
    zookeeper.add_topic("test.1", {0: [1, 2]})
    zookeeper.add_topic("test.4", {0: [2, 3], 1: [3, 1], 2: [1, 2], 3: [2, 3]},
                        isr={3: [2]})
    kwargs.setdefault('leader_poll_interval_ms', 10)
    kwargs.setdefault('leader_wait_timeout_ms', 1000)
    return Cluster(zookeeper=zookeeper, **kwargs)
