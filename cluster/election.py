"""
Leader Election on ZooKeeper (lowest sequence number wins).

Each node volunteers by creating an ephemeral-sequential znode under the
election root. The smallest one is the leader; everybody else watches only
its immediate predecessor, so a failure wakes up exactly one node.
"""

import logging
import threading
from typing import Callable, Optional

from kazoo.client import KazooState
from kazoo.exceptions import KazooException, NodeExistsError, NoNodeError
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import EventType

logger = logging.getLogger(__name__)

ELECTION_ROOT = "/election"
CANDIDATE_PREFIX = "c_"


class LeaderElection:
    def __init__(self, zk, on_become_leader: Callable = None,
                 on_become_worker: Callable = None, election_root: str = ELECTION_ROOT):
        """
        Initialize leader election.

        Args:
            zk: A started KazooClient
            on_become_leader: Callback when this node becomes leader
            on_become_worker: Callback when this node ends up a worker
            election_root: Parent znode of all candidates
        """
        self.zk = zk
        self.on_become_leader = on_become_leader
        self.on_become_worker = on_become_worker
        self.election_root = election_root

        self.candidate_node: Optional[str] = None
        self.leader_node: Optional[str] = None
        self.is_leader = False

        # Role callbacks run under this lock, so assignments never overlap
        self._lock = threading.RLock()
        self._stopped = True
        self._session_lost = False

    def start(self):
        """Volunteer and run the first election."""
        self._stopped = False
        self.zk.add_listener(self._on_connection_state)
        self._ensure_root()
        self.volunteer()
        self.reelect()

    def stop(self):
        """Withdraw from the election."""
        self._stopped = True
        self.zk.remove_listener(self._on_connection_state)
        with self._lock:
            node = self.candidate_node
            self.candidate_node = None
            self.is_leader = False
        if node is None:
            return
        try:
            self.zk.delete(f"{self.election_root}/{node}")
        except NoNodeError:
            pass
        except (KazooException, KazooTimeoutError) as e:
            logger.warning("Could not withdraw candidate %s: %s", node, e)

    def _ensure_root(self):
        try:
            if self.zk.exists(self.election_root) is None:
                self.zk.create(self.election_root, b"")
        except NodeExistsError:
            pass

    def volunteer(self):
        """Create this node's candidate znode."""
        prefix = f"{self.election_root}/{CANDIDATE_PREFIX}"
        path = self.zk.create(prefix, b"", ephemeral=True, sequence=True)
        with self._lock:
            self.candidate_node = path.rsplit("/", 1)[1]
        logger.info("Volunteered for leadership as %s", self.candidate_node)

    def reelect(self):
        """Decide this node's role and deliver it to the callbacks."""
        with self._lock:
            if self._stopped or self.candidate_node is None:
                return

            predecessor_stat = None
            while predecessor_stat is None:
                children = sorted(self.zk.get_children(self.election_root))
                if self.candidate_node not in children:
                    logger.warning("Candidate %s disappeared, volunteering again", self.candidate_node)
                    self.volunteer()
                    continue

                self.leader_node = children[0]
                if self.leader_node == self.candidate_node:
                    self.is_leader = True
                    logger.info("I am the leader (%s)", self.candidate_node)
                    if self.on_become_leader:
                        self.on_become_leader()
                    return

                predecessor = children[children.index(self.candidate_node) - 1]
                predecessor_stat = self.zk.exists(
                    f"{self.election_root}/{predecessor}", watch=self._on_predecessor_event
                )

            self.is_leader = False
            logger.info("I am not the leader, %s is. Watching %s", self.leader_node, predecessor)
            if self.on_become_worker:
                self.on_become_worker()

    def _on_predecessor_event(self, event):
        if event.type == EventType.DELETED:
            threading.Thread(target=self._reelect_safely, daemon=True).start()

    def _reelect_safely(self):
        try:
            self.reelect()
        except (KazooException, KazooTimeoutError) as e:
            logger.error("Re-election failed: %s (%s)", e, type(e).__name__)

    def _revolunteer(self):
        try:
            with self._lock:
                # reelect may already have volunteered on the new session
                if self.candidate_node is None:
                    self.volunteer()
            self.reelect()
        except (KazooException, KazooTimeoutError) as e:
            logger.error("Could not rejoin the election: %s (%s)", e, type(e).__name__)

    def _on_connection_state(self, state):
        """Candidate znodes die with the session; rejoin once reconnected."""
        if state == KazooState.LOST:
            self._session_lost = True
            self.is_leader = False
            if self._lock.acquire(blocking=False):
                try:
                    self.candidate_node = None
                finally:
                    self._lock.release()
            # Otherwise reelect holds the lock and replaces the vanished candidate
        elif state == KazooState.CONNECTED and self._session_lost:
            self._session_lost = False
            if not self._stopped:
                threading.Thread(target=self._revolunteer, daemon=True).start()
