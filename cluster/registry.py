"""
Service registry backed by ZooKeeper.

Every worker advertises its address as the payload of an ephemeral-sequential
znode under a single persistent parent. Whoever subscribes keeps a cached list
of all advertised addresses, rebuilt from scratch each time the parent's
children change.

    /service_registry              persistent, empty payload
    /service_registry/n_0000000003 ephemeral, b"http://host:port"
"""

import logging
import queue
import threading
import time
from enum import Enum
from typing import Optional, Tuple

from kazoo.client import KazooState
from kazoo.exceptions import KazooException, NoNodeError, NodeExistsError, SessionExpiredError
from kazoo.handlers.threading import KazooTimeoutError

from .errors import CoordinationError

logger = logging.getLogger(__name__)

REGISTRY_ROOT = "/service_registry"
MEMBER_PREFIX = "n_"

_COORDINATION_FAILURES = (KazooException, KazooTimeoutError, InterruptedError)
_RESYNC = object()
_STOP = object()


class Outcome(Enum):
    """Result of a registry mutation. Races map here instead of raising."""
    CREATED = "created"
    EXISTS = "exists"
    REGISTERED = "registered"
    ALREADY_REGISTERED = "already_registered"
    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    NOT_REGISTERED = "not_registered"


class MembershipRegistry:
    def __init__(self, zk, registry_root: str = REGISTRY_ROOT, retry_interval: float = 1.0):
        """
        Initialize the registry.

        Args:
            zk: A started KazooClient. Its session is shared, never owned.
            registry_root: Parent znode holding one child per worker
            retry_interval: Seconds to wait before retrying a failed refresh
        """
        self.zk = zk
        self.registry_root = registry_root
        self.retry_interval = retry_interval

        # Own registration: znode path or None
        self._current_node: Optional[str] = None
        self._state_lock = threading.Lock()
        # Bumped on every session loss
        self._session_generation = 0

        # Member cache, replaced wholesale by refresh()
        self._addresses: Optional[Tuple[str, ...]] = None
        self._refresh_lock = threading.Lock()
        self._refresh_count = 0
        self._last_refresh: Optional[float] = None
        self._subscribed = False

        # Watch notifications are queued here and handled by the refresher
        self._events = queue.Queue()
        self._stop_event = threading.Event()
        self._needs_resync = False
        self._refresher = threading.Thread(
            target=self._refresh_loop, name="registry-refresher", daemon=True
        )
        self._refresher.start()

        self.zk.add_listener(self._on_connection_state)

    @property
    def current_node(self) -> Optional[str]:
        return self._current_node

    @property
    def is_registered(self) -> bool:
        return self._current_node is not None

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed

    def _call(self, operation: str, path: str, func, *args, **kwargs):
        """Run a kazoo call, turning session/protocol failures into CoordinationError."""
        try:
            return func(*args, **kwargs)
        except (NoNodeError, NodeExistsError):
            raise
        except _COORDINATION_FAILURES as e:
            raise CoordinationError(operation, path, e) from e

    def ensure_registry_exists(self) -> Outcome:
        """
        Create the persistent registry root if it is missing.

        Several processes may race to create it; losing that race is fine.
        Raises CoordinationError on session failures.
        """
        root = self.registry_root
        try:
            if self._call("exists", root, self.zk.exists, root) is not None:
                return Outcome.EXISTS
            self._call("create", root, self.zk.create, root, b"")
        except NodeExistsError:
            logger.debug("Registry root %s was created concurrently", root)
            return Outcome.EXISTS
        logger.info("Created registry root %s", root)
        return Outcome.CREATED

    def register(self, address: str) -> Outcome:
        """
        Advertise this process's address to the cluster.

        The znode is ephemeral, so it disappears on its own when the session
        ends. A second call while registered does nothing.
        Raises CoordinationError on session failures.
        """
        with self._state_lock:
            if self._current_node is not None:
                logger.info("Already registered to service registry as %s", self._current_node)
                return Outcome.ALREADY_REGISTERED

            prefix = f"{self.registry_root}/{MEMBER_PREFIX}"
            payload = address.encode("utf-8")
            generation = self._session_generation
            try:
                path = self._create_member(prefix, payload)
            except NoNodeError:
                # Root vanished (or was never set up); recreate once
                self.ensure_registry_exists()
                try:
                    path = self._create_member(prefix, payload)
                except NoNodeError as e:
                    raise CoordinationError("create", prefix, e) from e

            if generation != self._session_generation:
                # The session that owns the new znode is already gone
                raise CoordinationError("create", path, SessionExpiredError())
            self._current_node = path

        logger.info("Registered to service registry as %s (%s)", path, address)
        return Outcome.REGISTERED

    def _create_member(self, prefix: str, payload: bytes) -> str:
        return self._call(
            "create", prefix, self.zk.create, prefix, payload, ephemeral=True, sequence=True
        )

    def unregister(self) -> Outcome:
        """
        Withdraw this process's advertisement, if there is one.

        A node that already vanished (expired session, earlier delete) is not
        an error. Raises CoordinationError on session failures, keeping the
        local state so the delete can be retried.
        """
        with self._state_lock:
            path = self._current_node
            if path is None:
                return Outcome.NOT_REGISTERED

            try:
                if self._call("exists", path, self.zk.exists, path) is None:
                    outcome = Outcome.ALREADY_ABSENT
                else:
                    self._call("delete", path, self.zk.delete, path, -1)
                    outcome = Outcome.DELETED
            except NoNodeError:
                outcome = Outcome.ALREADY_ABSENT

            self._current_node = None

        logger.info("Unregistered %s from service registry (%s)", path, outcome.value)
        return outcome

    def subscribe_to_updates(self) -> Tuple[str, ...]:
        """
        Start following membership changes.

        Arms the first watch and loads the cache synchronously. Safe to call
        again; each call re-synchronizes. Failures are logged and retried in
        the background.
        """
        self._subscribed = True
        try:
            return self.refresh()
        except CoordinationError as e:
            logger.error("Could not subscribe to registry updates: %s", e)
            self._events.put(_RESYNC)
            return self._addresses or ()

    def get_addresses(self) -> Tuple[str, ...]:
        """
        Return the addresses of all live members.

        Loads the cache on first use. Raises CoordinationError if that first
        load fails.
        """
        addresses = self._addresses
        if addresses is None:
            with self._refresh_lock:
                if self._addresses is None:
                    self._refresh_locked()
                addresses = self._addresses
        return addresses

    def refresh(self) -> Tuple[str, ...]:
        """Rebuild the member cache and re-arm the children watch."""
        with self._refresh_lock:
            return self._refresh_locked()

    def _refresh_locked(self) -> Tuple[str, ...]:
        root = self.registry_root
        try:
            # Listing with a watch is what keeps notifications coming
            children = self._call(
                "get_children", root, self.zk.get_children, root, watch=self._on_children_changed
            )
        except NoNodeError:
            # No root means no members; watch for it to appear instead
            logger.warning("Registry root %s does not exist yet", root)
            if self._call("exists", root, self.zk.exists, root, watch=self._on_children_changed):
                self._events.put(_RESYNC)
            children = []

        addresses = []
        for child in sorted(children):
            child_path = f"{root}/{child}"
            try:
                data, _ = self._call("get", child_path, self.zk.get, child_path)
            except NoNodeError:
                logger.debug("Member %s left before its address was read", child_path)
                continue
            try:
                addresses.append(data.decode("utf-8"))
            except UnicodeDecodeError:
                logger.warning("Member %s has an undecodable address %r, skipped", child_path, data)

        self._addresses = tuple(addresses)
        self._refresh_count += 1
        self._last_refresh = time.time()
        logger.info("The cluster addresses are: %s", list(self._addresses))
        return self._addresses

    def _on_children_changed(self, event):
        """Kazoo watch callback. Only queues; the refresher does the work."""
        if self._stop_event.is_set():
            return
        logger.debug("Registry watch fired: %s", event)
        self._events.put(event)

    def _on_connection_state(self, state):
        """Kazoo connection listener. Runs on the connection thread, must not block."""
        if state == KazooState.LOST:
            # Ephemeral nodes and watches die with the session
            self._session_generation += 1
            self._needs_resync = True
            self._addresses = None
            if self._state_lock.acquire(blocking=False):
                try:
                    if self._current_node is not None:
                        logger.warning("Session lost, %s is no longer advertised", self._current_node)
                    self._current_node = None
                finally:
                    self._state_lock.release()
            # Otherwise register/unregister holds the lock and sees the new generation
        elif state == KazooState.SUSPENDED:
            self._needs_resync = True
        elif state == KazooState.CONNECTED and self._needs_resync:
            self._needs_resync = False
            if self._subscribed and not self._stop_event.is_set():
                self._events.put(_RESYNC)

    def _refresh_loop(self):
        """Drain watch notifications, one full refresh per burst."""
        while not self._stop_event.is_set():
            try:
                event = self._events.get(timeout=0.5)
            except queue.Empty:
                continue
            if event is _STOP:
                break

            while True:
                try:
                    if self._events.get_nowait() is _STOP:
                        return
                except queue.Empty:
                    break

            try:
                self.refresh()
            except CoordinationError as e:
                logger.error(
                    "Registry refresh failed, retrying in %.1fs: %s (%s)",
                    self.retry_interval, e, e.kind
                )
                if self._stop_event.wait(self.retry_interval):
                    break
                self._events.put(_RESYNC)
            except Exception:
                logger.exception("Unexpected registry refresh failure, retrying in %.1fs", self.retry_interval)
                if self._stop_event.wait(self.retry_interval):
                    break
                self._events.put(_RESYNC)

    def stats(self) -> dict:
        addresses = self._addresses
        return {
            "registry_root": self.registry_root,
            "registered_node": self._current_node,
            "subscribed": self._subscribed,
            "member_count": len(addresses) if addresses is not None else None,
            "refresh_count": self._refresh_count,
            "last_refresh": self._last_refresh,
        }

    def close(self):
        """Stop the refresher and drop the cache. Does not touch the session."""
        self._stop_event.set()
        self._events.put(_STOP)
        self.zk.remove_listener(self._on_connection_state)
        if self._refresher is not threading.current_thread():
            self._refresher.join(timeout=3)
        self._addresses = None
        self._subscribed = False
