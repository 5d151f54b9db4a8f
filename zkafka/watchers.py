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
__all__ = ["Watch", "WatchLoop"]
import logging
import sys

log = logging.getLogger(__name__)


class Watch(object):
    """A one-shot ZooKeeper watch that can be waited on.

    Instances are passed as the `watch` argument of `KazooClient` read calls.
    ZooKeeper invokes a watch at most once; to keep observing a znode, the read
    has to be issued again with a fresh `Watch`.
    """
    def __init__(self, handler, callback=None):
        """
        :param handler: The concurrency handler providing the `Event` type
        :type handler: :class:`zkafka.handlers.Handler`
        :param callback: Called with the :class:`kazoo.protocol.states.WatchedEvent`
            when the watch fires
        :type callback: callable
        """
        self._fired = handler.Event()
        self._callback = callback
        self.event = None

    def __repr__(self):
        return "<{module}.{name} at {id_} (completed={completed})>".format(
            module=self.__class__.__module__,
            name=self.__class__.__name__,
            id_=hex(id(self)),
            completed=self.completed
        )

    def __call__(self, event):
        log.debug("Watch fired: %s", event)
        self.event = event
        try:
            if self._callback is not None:
                self._callback(event)
        finally:
            self._fired.set()

    @property
    def completed(self):
        """Whether ZooKeeper has delivered the event for this watch"""
        return self._fired.is_set()

    def wait(self, timeout=None):
        """Block until the watch fires

        :param timeout: Seconds to wait. `None` waits forever.
        :type timeout: float
        :returns: `True` if the watch fired, `False` on timeout
        """
        return bool(self._fired.wait(timeout))


class WatchLoop(object):
    """Keeps a watched read alive by re-issuing it after every notification

    Each round calls `read` with a fresh :class:`Watch`, hands the result to
    `callback` and then sleeps until either that watch fires or `stop` is
    called.
    """
    def __init__(self, handler, read, callback, name=None):
        """
        :param handler: The concurrency handler used to run the loop
        :type handler: :class:`zkafka.handlers.Handler`
        :param read: Performs the watched read. Receives the :class:`Watch` to
            register and returns the value passed to `callback`.
        :type read: callable
        :param callback: Receives the result of every read
        :type callback: callable
        :param name: The name of the worker running the loop
        :type name: str
        """
        self._handler = handler
        self._read = read
        self._callback = callback
        self._name = name or "zkafka.watchers.WatchLoop"
        self._wake = handler.Event()
        self._stopped = handler.Event()
        self._worker = None
        self._worker_exception = None

    def __repr__(self):
        return "<{module}.{name} at {id_} (name={loop_name}, running={running})>".format(
            module=self.__class__.__module__,
            name=self.__class__.__name__,
            id_=hex(id(self)),
            loop_name=self._name,
            running=self.running
        )

    @property
    def running(self):
        return self._worker is not None and not self._stopped.is_set()

    def start(self):
        """Start observing in a background worker"""
        self._worker = self._handler.spawn(self._run, name=self._name)
        return self

    def stop(self, timeout=None):
        """Stop observing and wait for the worker to exit

        Raises any exception the worker died with.
        """
        self._stopped.set()
        self._wake.set()
        self.join(timeout)

    def join(self, timeout=None):
        """Wait for the worker to exit, re-raising its exception if it failed"""
        if self._worker is not None:
            self._worker.join(timeout)
        if self._worker_exception is not None:
            raise self._worker_exception

    def _run(self):
        try:
            while not self._stopped.is_set():
                self._wake.clear()
                if self._stopped.is_set():
                    break
                value = self._read(Watch(self._handler, self._on_event))
                self._callback(value)
                self._wake.wait()
        except Exception:
            log.exception("Watch loop %s failed", self._name)
            self._worker_exception = sys.exc_info()[1]
            self._stopped.set()

    def _on_event(self, event):
        self._wake.set()
