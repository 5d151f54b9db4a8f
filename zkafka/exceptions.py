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


class KafkaException(Exception):
    """Generic exception type. The base of all zkafka exception types."""
    pass


class CoordinationError(KafkaException):
    """Indicates that ZooKeeper answered a request with an unexpected status

    :ivar path: The znode path the failed request was addressed to
    :ivar status: The name of the status ZooKeeper reported, e.g. `ConnectionLoss`
    """
    def __init__(self, message, path=None, status=None):
        super(CoordinationError, self).__init__(message)
        self.path = path
        self.status = status


class ConsumerInstanceRegistrationFailed(CoordinationError):
    """Indicates that a consumer instance could not write its membership nodes"""
    pass


class ReleasePartitionFailure(CoordinationError):
    """Indicates that a partition claim node could not be removed"""
    pass


class CoordinationTimeout(KafkaException):
    """Indicates that a bounded wait on ZooKeeper state ran out of time"""
    pass


class ValidationError(KafkaException, ValueError):
    """Indicates that a topic, partition or argument failed validation before
        anything was written to ZooKeeper
    """
    pass


class VersionNotSupported(KafkaException):
    """Indicates that a znode payload carries a schema version we don't understand"""
    pass


class NoClusterRegistered(KafkaException):
    """Indicates that no Kafka cluster has registered its brokers in ZooKeeper"""
    pass


class BrokerNotFound(KafkaException):
    """Indicates that a broker id referenced by partition state is not registered"""
    pass


class LeaderNotAvailable(KafkaException):
    """Indicates that a partition currently has no live leader"""
    pass


class LeaderElectionInProgress(KafkaException):
    """Indicates that a previous preferred replica election has not finished yet"""
    pass


class TopicNotFound(KafkaException):
    """Indicates that the requested topic does not exist"""
    pass


class TopicAlreadyExists(KafkaException):
    """Indicates that a topic with the requested name already exists"""
    pass


class TopicMarkedForDeletion(KafkaException):
    """Indicates that the topic has already been marked for deletion"""
    pass


class NoRunningInstances(KafkaException):
    """Indicates that a consumer group has no registered instances"""
    pass


class InconsistentSubscriptions(KafkaException):
    """Indicates that the instances of a consumer group disagree about their
        subscription
    """
    pass


class InvalidSubscription(KafkaException):
    """Indicates that a subscription could not be built or parsed"""
    pass


class ConsumergroupActive(KafkaException):
    """Indicates that an operation requiring an inactive group found members"""
    pass


class PartitionAlreadyClaimed(KafkaException):
    """Indicates that another consumer instance already claimed the partition"""
    def __init__(self, partition, *args, **kwargs):
        super(PartitionAlreadyClaimed, self).__init__(*args, **kwargs)
        self.partition = partition


class ReassignmentPlanError(KafkaException):
    """Indicates that no safe sequence of replica set changes could be found"""
    pass
