# cluster/__init__.py
from .errors import AddressResolutionError, CoordinationError, MembershipError
from .registry import MembershipRegistry, Outcome
from .role import RoleTransitionHandler
from .election import LeaderElection
from .node import ClusterNode

__all__ = [
    'MembershipRegistry', 'Outcome', 'RoleTransitionHandler', 'LeaderElection', 'ClusterNode',
    'MembershipError', 'CoordinationError', 'AddressResolutionError',
]
