import os
import time

import pytest

from zkafka import Cluster


def get_cluster(**kwargs):
    """Gets a Cluster for integration tests, connected to an already-running
    ZooKeeper with Kafka brokers registered.

    The ZooKeeper connect string is read from the ZOOKEEPER environment
    variable; the calling test is skipped when it is not set.
    """
    zookeeper_hosts = os.environ.get('ZOOKEEPER', None)
    if not zookeeper_hosts:
        pytest.skip("ZOOKEEPER is not set")
    return Cluster(zookeeper_hosts=zookeeper_hosts, **kwargs)


def stop_cluster(cluster):
    """Close a cluster created by get_cluster"""
    cluster.close()


def retry(assertion_callable, retry_time=10, wait_between_tries=0.1, exception_to_retry=AssertionError):
    """Retry assertion callable in a loop"""
    start = time.time()
    while True:
        try:
            return assertion_callable()
        except exception_to_retry as e:
            if time.time() - start >= retry_time:
                raise e
            time.sleep(wait_between_tries)
