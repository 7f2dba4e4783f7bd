"""Background duties of a session host.

While a host is attached to an active session, its agent:

* checks the access code every second and regenerates it when it expires,
* refreshes the session's host location every two minutes when it has a way
  to locate the host device.

The agent subscribes to its card and detaches itself once the session is
stopped or handed to another host. ``stop()`` cancels both jobs and the
subscription; nothing is written after it returns.
"""
import logging
import threading
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError

from markit.database.store import Subscription, TreeStore
from markit.schemas.geo import GeoLocation
from markit.services.errors import NoActiveSession, StoreWriteFailed
from markit.services.session_service import (
    active_sessions,
    refresh_host_location,
    rotate_code_if_expired,
)

TICK_SECONDS = 1
LOCATION_REFRESH_SECONDS = 120

LocationProvider = Callable[[], Optional[GeoLocation]]


class HostAgent:
    def __init__(
        self,
        store: TreeStore,
        card_id: str,
        host_id: str,
        scheduler,
        location_provider: Optional[LocationProvider] = None,
    ):
        self.store = store
        self.card_id = card_id
        self.host_id = host_id
        self.scheduler = scheduler
        self.location_provider = location_provider
        self.running = False
        self._jobs = []
        self._subscription: Optional[Subscription] = None
        self._lock = threading.Lock()

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.stop()

    def start(self) -> "HostAgent":
        with self._lock:
            if self.running:
                return self
            self.running = True

        subscription = self.store.subscribe(f"cards/{self.card_id}", self._on_card)
        with self._lock:
            if not self.running:
                # the first snapshot already showed no session for us
                subscription.unsubscribe()
                return self
            self._subscription = subscription

            self._jobs.append(
                self.scheduler.add_job(
                    self.tick,
                    "interval",
                    seconds=TICK_SECONDS,
                    id=f"rotate-code-{self.card_id}",
                    replace_existing=True,
                )
            )
            if self.location_provider is not None:
                self._jobs.append(
                    self.scheduler.add_job(
                        self.refresh_location,
                        "interval",
                        seconds=LOCATION_REFRESH_SECONDS,
                        id=f"refresh-location-{self.card_id}",
                        replace_existing=True,
                    )
                )
        logging.info(f"Host agent attached to card {self.card_id}")
        return self

    def stop(self) -> None:
        with self._lock:
            if not self.running and self._subscription is None and not self._jobs:
                return
            self.running = False
            jobs, self._jobs = self._jobs, []
            subscription, self._subscription = self._subscription, None

        for job in jobs:
            try:
                job.remove()
            except JobLookupError:
                pass
        if subscription is not None:
            subscription.unsubscribe()
        logging.info(f"Host agent detached from card {self.card_id}")

    # ------------------------------------------------------------------ jobs
    def tick(self) -> Optional[str]:
        if not self.running:
            return None
        try:
            return rotate_code_if_expired(self.store, self.card_id, self.host_id)
        except StoreWriteFailed:
            logging.error(f"Failed to regenerate code for card {self.card_id}")
            return None

    def refresh_location(self) -> Optional[GeoLocation]:
        """Push the host's current position. Failures skip this round only."""
        if not self.running:
            return None
        try:
            location = self.location_provider()
        except Exception as e:
            logging.warning(f"Error getting location for periodic update: {e}")
            return None
        if location is None:
            logging.warning("Host location unavailable, skipping periodic update")
            return None

        try:
            refresh_host_location(self.store, self.card_id, location)
        except NoActiveSession:
            self.stop()
            return None
        except StoreWriteFailed:
            logging.error(f"Failed to auto-update session location for card {self.card_id}")
            return None
        return location

    # --------------------------------------------------------- subscription
    def _on_card(self, card: Optional[dict]) -> None:
        current = (card or {}).get("current") or {}
        if not current.get("active") or current.get("hostId") != self.host_id:
            self.stop()


class HostAgentRegistry:
    """One agent per card for this process."""

    def __init__(self, scheduler):
        self.scheduler = scheduler
        self._agents: dict[str, HostAgent] = {}
        self._lock = threading.Lock()

    def start(
        self,
        store: TreeStore,
        card_id: str,
        host_id: str,
        location_provider: Optional[LocationProvider] = None,
    ) -> HostAgent:
        self.stop(card_id)
        agent = HostAgent(store, card_id, host_id, self.scheduler, location_provider)
        with self._lock:
            self._agents[card_id] = agent
        return agent.start()

    def resume(self, store: TreeStore) -> list[HostAgent]:
        """Re-attach an agent to every session still running, after a restart."""
        return [
            self.start(store, session.cardId, session.hostId)
            for session in active_sessions(store)
        ]

    def get(self, card_id: str) -> Optional[HostAgent]:
        with self._lock:
            return self._agents.get(card_id)

    def stop(self, card_id: str) -> None:
        with self._lock:
            agent = self._agents.pop(card_id, None)
        if agent is not None:
            agent.stop()

    def shutdown(self) -> None:
        with self._lock:
            agents, self._agents = list(self._agents.values()), {}
        for agent in agents:
            agent.stop()
