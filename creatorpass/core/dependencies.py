from fastapi import Depends, Request

from .container import ApplicationContainer


def get_container(request: Request) -> ApplicationContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Application container not initialised.")
    return container


def get_settings(container: ApplicationContainer = Depends(get_container)):
    return container.settings


def get_identity_service(container: ApplicationContainer = Depends(get_container)):
    return container.identity_service


def get_checkout_service(container: ApplicationContainer = Depends(get_container)):
    return container.checkout_service


def get_webhook_reconciler(container: ApplicationContainer = Depends(get_container)):
    return container.webhook_reconciler


def get_access_control(container: ApplicationContainer = Depends(get_container)):
    return container.access_control


def get_lifecycle_service(container: ApplicationContainer = Depends(get_container)):
    return container.lifecycle_service


def get_clock(container: ApplicationContainer = Depends(get_container)):
    return container.clock
