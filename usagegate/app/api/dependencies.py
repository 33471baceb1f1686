"""Service dependencies shared by the routers."""

from typing import Annotated

from fastapi import Depends

from usagegate.app.services.ping_service import PingService, get_ping_service

PingServiceDep = Annotated[PingService, Depends(get_ping_service)]

__all__ = ["PingServiceDep"]
