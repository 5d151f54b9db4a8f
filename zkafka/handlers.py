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
__all__ = ["Handler", "ThreadingHandler", "GEventHandler"]

import logging
import sys
import threading
import time

try:
    import gevent
    import gevent.event
    import gevent.lock
except ImportError:
    gevent = None

log = logging.getLogger(__name__)


class Handler(object):
    """Base class for Handler classes"""
    def spawn(self, target, *args, **kwargs):
        """Create the worker that will process the work to be handled"""
        raise NotImplementedError

    def fan_out(self, fn, items, max_workers=8, name=None):
        """Apply `fn` to every item on a bounded pool of workers

        At most `max_workers` workers are spawned; each one pulls the next
        pending item until none are left. The first exception raised by `fn`
        stops the workers from picking up further items. All workers are joined
        before this method returns or re-raises that exception.

        :param fn: The function to call once per item
        :type fn: callable accepting one item
        :param items: The items to process
        :type items: Iterable
        :param max_workers: The maximum number of concurrent workers
        :type max_workers: int
        :param name: A label used to name the workers
        :type name: str
        :returns: The results of `fn`, in the order of `items`
        """
        items = list(items)
        if not items:
            return []
        results = [None] * len(items)
        pending = iter(enumerate(items))
        failures = []
        lock = self.Lock()

        def worker():
            while True:
                with lock:
                    if failures:
                        return
                    try:
                        index, item = next(pending)
                    except StopIteration:
                        return
                try:
                    results[index] = fn(item)
                except Exception:
                    with lock:
                        failures.append(sys.exc_info()[1])
                    return

        workers = [self.spawn(worker, name="{}-{}".format(name or "fan_out", i))
                   for i in range(min(max_workers, len(items)))]
        for w in workers:
            w.join()
        if failures:
            if len(failures) > 1:
                log.debug("Discarding %d further fan-out failures", len(failures) - 1)
            raise failures[0]
        return results


class ThreadingHandler(Handler):
    """A handler that uses a :class:`threading.Thread` to perform its work"""
    Event = threading.Event
    Lock = threading.Lock
    _workers_spawned = 0

    def sleep(self, seconds=0):
        time.sleep(seconds)

    def spawn(self, target, *args, **kwargs):
        if 'name' in kwargs:
            kwargs['name'] = "{}: {}".format(ThreadingHandler._workers_spawned, kwargs['name'])
        t = threading.Thread(target=target, *args, **kwargs)
        t.daemon = True
        t.start()
        ThreadingHandler._workers_spawned += 1
        return t


if gevent:
    class GEventHandler(Handler):
        """A handler that uses a greenlet to perform its work"""
        Event = gevent.event.Event
        Lock = gevent.lock.RLock  # greenlets re-enter from the same thread

        def sleep(self, seconds=0):
            gevent.sleep(seconds)

        def spawn(self, target, *args, **kwargs):
            # Greenlets don't support naming
            if 'name' in kwargs:
                kwargs.pop('name')
            t = gevent.spawn(target, *args, **kwargs)
            return t
else:
    GEventHandler = None
