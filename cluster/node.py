"""
Cluster Node: ZooKeeper session, service registry, election and HTTP surface.
"""

import logging

from flask import Flask, jsonify
from kazoo.client import KazooClient

from .election import ELECTION_ROOT, LeaderElection
from .errors import AddressResolutionError, CoordinationError
from .registry import REGISTRY_ROOT, MembershipRegistry
from .role import RoleTransitionHandler

logger = logging.getLogger(__name__)


class ClusterNode:
    def __init__(self, port: int, zk_hosts: str = "127.0.0.1:2181",
                 session_timeout: float = 3.0, advertise_host: str = None,
                 registry_root: str = REGISTRY_ROOT, election_root: str = ELECTION_ROOT,
                 zk=None):
        """
        Initialize a cluster node.

        Args:
            port: Port to listen on (and to advertise)
            zk_hosts: ZooKeeper connection string
            session_timeout: ZooKeeper session timeout in seconds
            advertise_host: Host name put in the advertised address
            registry_root: Znode holding worker addresses
            election_root: Znode holding election candidates
            zk: Pre-built client to use instead of connecting to zk_hosts
        """
        self.port = port
        self.zk = zk or KazooClient(hosts=zk_hosts, timeout=session_timeout)

        self.registry = MembershipRegistry(self.zk, registry_root=registry_root)
        self.role_handler = RoleTransitionHandler(self.registry, port, host=advertise_host)
        self.election = LeaderElection(
            self.zk,
            on_become_leader=self.role_handler.on_becomes_leader,
            on_become_worker=self.role_handler.on_becomes_worker,
            election_root=election_root,
        )

        self.app = Flask(f"node_{port}")
        self._setup_routes()

    def _setup_routes(self):
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health():
            return jsonify({
                "status": "ok",
                "address": self._address(),
                "role": self.role_handler.role,
                "is_leader": self.election.is_leader,
            })

        @self.app.route('/addresses', methods=['GET'])
        def addresses():
            try:
                found = self.registry.get_addresses()
            except CoordinationError as e:
                logger.error("Could not list cluster addresses: %s", e)
                return jsonify({"success": False, "error": e.kind}), 503
            return jsonify({"success": True, "addresses": list(found)})

        @self.app.route('/stats', methods=['GET'])
        def stats():
            node_stats = self.registry.stats()
            node_stats['role'] = self.role_handler.role
            node_stats['candidate_node'] = self.election.candidate_node
            node_stats['leader_node'] = self.election.leader_node
            return jsonify(node_stats)

    def _address(self):
        try:
            return self.role_handler.current_address()
        except AddressResolutionError:
            return None

    def join(self):
        """Connect to ZooKeeper and take part in the election."""
        self.zk.start()
        try:
            self.registry.ensure_registry_exists()
        except CoordinationError as e:
            # Another node may have created it already
            logger.error("Could not set up registry root: %s", e)
        self.election.start()

    def start(self, host: str = '0.0.0.0'):
        """Start the node."""
        self.join()
        self.app.run(host=host, port=self.port, threaded=True)

    def shutdown(self):
        """Shutdown the node."""
        self.election.stop()
        try:
            self.registry.unregister()
        except CoordinationError as e:
            logger.warning("Could not unregister on shutdown: %s", e)
        self.registry.close()
        self.zk.stop()
        self.zk.close()
