from typing import Annotated, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, Header, Request

from markit.api.auth import get_current_admin
from markit.database.store import TreeStore, get_store
from markit.schemas.attendance import DeviceInfo
from markit.schemas.user import RosterUser
from markit.services import roster_service
from markit.services.host_agent import HostAgentRegistry
from markit.utils.deviceInfo import get_device_info

scheduler = BackgroundScheduler()
host_agents = HostAgentRegistry(scheduler)


def get_host_agents() -> HostAgentRegistry:
    return host_agents


def get_participant(
    card_id: str,
    store: Annotated[TreeStore, Depends(get_store)],
    x_session_token: Annotated[Optional[str], Header()] = None,
) -> tuple[str, RosterUser]:
    """Resolve the participant's device token to their roster entry."""
    return roster_service.resume(store, card_id, x_session_token)


def get_request_device(request: Request) -> DeviceInfo:
    return get_device_info(request.headers.get("user-agent"))


# ----------------------------------------Dependencies--------------------------------------------
store_dependency = Annotated[TreeStore, Depends(get_store)]
admin_dependency = Annotated[dict, Depends(get_current_admin)]
agents_dependency = Annotated[HostAgentRegistry, Depends(get_host_agents)]
participant_dependency = Annotated[tuple[str, RosterUser], Depends(get_participant)]
device_dependency = Annotated[DeviceInfo, Depends(get_request_device)]
