import logging

from .broker import Broker
from .cluster import Cluster
from .consumergroup import Consumergroup, Instance
from .partition import Partition
from .replicaassigner import ReplicaAssigner
from .subscription import Subscription, StaticSubscription, PatternSubscription
from .topic import Topic

__version__ = "0.1.0"


__all__ = ["Broker", "Cluster", "Consumergroup", "Instance", "Partition",
           "ReplicaAssigner", "Subscription", "StaticSubscription",
           "PatternSubscription", "Topic"]

logging.getLogger(__name__).addHandler(logging.NullHandler())
