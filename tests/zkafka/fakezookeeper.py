"""In-memory stand-ins for a started KazooClient, used by the unit tests"""
import itertools
import json
import posixpath
import threading
import time
from collections import defaultdict

from kazoo.exceptions import NoNodeError, NodeExistsError, NotEmptyError
from kazoo.protocol.states import EventType, KeeperState, WatchedEvent, ZnodeStat


class _Node(object):
    def __init__(self, data, ephemeral):
        self.data = data
        self.ephemeral = ephemeral
        self.ctime = self.mtime = int(time.time() * 1000)
        self.version = 0


class FakeZooKeeper(object):
    """Implements the subset of the KazooClient API zkafka uses

    Watches are one-shot and fire synchronously in the thread making the
    change. `failures` maps `(method, path)` to an exception raised by the
    next matching call.
    """
    def __init__(self):
        self._lock = threading.RLock()
        self._nodes = {'/': _Node(b'', False)}
        self._sequence = itertools.count()
        self._data_watches = defaultdict(list)
        self._child_watches = defaultdict(list)
        self.failures = {}
        self.started = False
        self.closed = False

    def start(self, timeout=15):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def _check_failure(self, method, path):
        error = self.failures.pop((method, path), None)
        if error is not None:
            raise error

    def _children_of(self, path):
        prefix = path.rstrip('/') + '/'
        return sorted(p[len(prefix):] for p in self._nodes
                      if p.startswith(prefix) and p != prefix and '/' not in p[len(prefix):])

    def _stat(self, path):
        node = self._nodes[path]
        return ZnodeStat(czxid=0, mzxid=0, ctime=node.ctime, mtime=node.mtime,
                         version=node.version, cversion=0, aversion=0,
                         ephemeralOwner=1 if node.ephemeral else 0,
                         dataLength=len(node.data),
                         numChildren=len(self._children_of(path)), pzxid=0)

    def _fire(self, watches, event_type, path):
        event = WatchedEvent(event_type, KeeperState.CONNECTED, path)
        for watch in watches:
            watch(event)

    def _pop_watches(self, registry, path):
        return registry.pop(path, [])

    def get(self, path, watch=None):
        with self._lock:
            self._check_failure('get', path)
            if path not in self._nodes:
                raise NoNodeError()
            if watch is not None:
                self._data_watches[path].append(watch)
            return self._nodes[path].data, self._stat(path)

    def get_children(self, path, watch=None):
        with self._lock:
            self._check_failure('get_children', path)
            if path not in self._nodes:
                raise NoNodeError()
            if watch is not None:
                self._child_watches[path].append(watch)
            return self._children_of(path)

    def exists(self, path, watch=None):
        with self._lock:
            self._check_failure('exists', path)
            if watch is not None:
                self._data_watches[path].append(watch)
            return self._stat(path) if path in self._nodes else None

    def create(self, path, value=b'', acl=None, ephemeral=False, sequence=False,
               makepath=False):
        with self._lock:
            self._check_failure('create', path)
            if sequence:
                path = "{}{:010d}".format(path, next(self._sequence))
            parent = posixpath.dirname(path)
            if parent not in self._nodes:
                if not makepath:
                    raise NoNodeError()
                self.ensure_path(parent)
            if path in self._nodes:
                raise NodeExistsError()
            self._nodes[path] = _Node(value, ephemeral)
            data_watches = self._pop_watches(self._data_watches, path)
            child_watches = self._pop_watches(self._child_watches, parent)
        self._fire(data_watches, EventType.CREATED, path)
        self._fire(child_watches, EventType.CHILD, parent)
        return path

    def ensure_path(self, path):
        if path in self._nodes:
            return True
        self.ensure_path(posixpath.dirname(path))
        try:
            self.create(path)
        except NodeExistsError:
            pass
        return True

    def set(self, path, value, version=-1):
        with self._lock:
            self._check_failure('set', path)
            if path not in self._nodes:
                raise NoNodeError()
            node = self._nodes[path]
            node.data = value
            node.mtime = int(time.time() * 1000)
            node.version += 1
            stat = self._stat(path)
            data_watches = self._pop_watches(self._data_watches, path)
        self._fire(data_watches, EventType.CHANGED, path)
        return stat

    def delete(self, path, version=-1, recursive=False):
        with self._lock:
            self._check_failure('delete', path)
            if path not in self._nodes:
                raise NoNodeError()
            children = self._children_of(path)
            if children and not recursive:
                raise NotEmptyError()
        for child in children:
            self.delete(posixpath.join(path, child), recursive=True)
        with self._lock:
            del self._nodes[path]
            parent = posixpath.dirname(path)
            data_watches = self._pop_watches(self._data_watches, path)
            child_watches = self._pop_watches(self._child_watches, path)
            parent_watches = self._pop_watches(self._child_watches, parent)
        self._fire(data_watches + child_watches, EventType.DELETED, path)
        self._fire(parent_watches, EventType.CHILD, parent)
        return True

    def expire_session(self):
        """Drop every ephemeral node, as ZooKeeper does when a session ends"""
        with self._lock:
            ephemeral = sorted((p for p, n in self._nodes.items() if n.ephemeral),
                               reverse=True)
        for path in ephemeral:
            self.delete(path)

    def read_json(self, path):
        data, _ = self.get(path)
        return json.loads(data.decode('utf-8'))

    def write_json(self, path, payload):
        data = json.dumps(payload).encode('utf-8')
        if self.exists(path) is None:
            self.ensure_path(posixpath.dirname(path))
            self.create(path, data)
        else:
            self.set(path, data)


class FakeKafkaZooKeeper(FakeZooKeeper):
    """A FakeZooKeeper that also plays the part of the Kafka controller

    New partitions get their preferred replica elected as leader, and topics
    marked for deletion are removed.
    """
    def __init__(self, elect_leaders=True, delete_topics=True):
        super(FakeKafkaZooKeeper, self).__init__()
        self.elect_leaders = elect_leaders
        self.delete_topics = delete_topics
        for path in ("/brokers/ids", "/brokers/topics", "/config/changes",
                     "/admin/delete_topics"):
            self.ensure_path(path)

    def register_broker(self, broker_id, host="localhost", port=None, version=1, **extra):
        payload = dict(version=version, host=host, port=port or 9091 + broker_id,
                       jmx_port=-1, **extra)
        self.write_json("/brokers/ids/{}".format(broker_id), payload)

    def add_topic(self, name, assignment, isr=None, config=None):
        """Register a topic as if it had been created and its leaders elected

        :param assignment: dict of partition id to replica ids
        :param isr: dict of partition id to in-sync replica ids. Defaults to
            the full replica set.
        """
        isr = isr or {}
        if config is not None:
            self.write_json("/config/topics/{}".format(name),
                            {"version": 1, "config": config})
        self.write_json("/brokers/topics/{}".format(name), {
            "version": 1,
            "partitions": dict((str(p), r) for p, r in assignment.items())})
        for partition_id, replicas in assignment.items():
            self.set_partition_state(name, partition_id, replicas[0],
                                     isr.get(partition_id, replicas))

    def set_partition_state(self, topic, partition_id, leader, isr):
        self.write_json(
            "/brokers/topics/{}/partitions/{}/state".format(topic, partition_id),
            {"controller_epoch": 1, "leader": leader, "version": 1,
             "leader_epoch": 0, "isr": isr})

    def _elect(self, path):
        topic = posixpath.basename(path)
        assignment = self.read_json(path)["partitions"]
        for partition_id, replicas in assignment.items():
            state = "{}/partitions/{}/state".format(path, partition_id)
            if self.exists(state) is None:
                self.set_partition_state(topic, partition_id, replicas[0], replicas)

    def create(self, path, value=b'', **kwargs):
        created = super(FakeKafkaZooKeeper, self).create(path, value, **kwargs)
        parent = posixpath.dirname(created)
        if self.elect_leaders and parent == "/brokers/topics" and value:
            self._elect(created)
        if self.delete_topics and parent == "/admin/delete_topics":
            topic = posixpath.basename(created)
            self.delete("/brokers/topics/{}".format(topic), recursive=True)
            if self.exists("/config/topics/{}".format(topic)) is not None:
                self.delete("/config/topics/{}".format(topic))
            self.delete(created)
        return created

    def set(self, path, value, version=-1):
        stat = super(FakeKafkaZooKeeper, self).set(path, value, version=version)
        if self.elect_leaders and posixpath.dirname(path) == "/brokers/topics":
            self._elect(path)
        return stat
