import time
from typing import Callable, List, Optional, Sequence

from sync_core.models import ServiceDescriptor, UpdateOutcome
from sync_core.tag_utils import resolve_latest


def reconcile(
    service: ServiceDescriptor,
    list_tags: Callable[[str], List[str]],
    update_image: Callable[[str, str], None],
    logger,
) -> Optional[UpdateOutcome]:
    """Bring one service up to the latest tag matching its pattern.

    Returns None when nothing matches or the service already runs that tag.
    RegistryFetchError and UpdateError propagate to the caller.
    """
    latest_tag = resolve_latest(service.current_image_repository, service.tag_pattern, list_tags, logger)
    if latest_tag is None:
        return None
    if latest_tag == service.current_image_tag:
        logger.debug(f"{service.name} already on {service.current_image}")
        return None

    new_image = f"{service.current_image_repository}:{latest_tag}"
    update_image(service.id, new_image)
    logger.info(f"Updated {service.name}: {service.current_image} -> {new_image}")
    return UpdateOutcome(
        service_name=service.name,
        from_image_reference=service.current_image,
        to_image_reference=new_image,
    )


def run_pass(
    services: Sequence[ServiceDescriptor],
    reconcile_fn: Callable[[ServiceDescriptor], Optional[UpdateOutcome]],
    interval: float,
    logger,
    sleep=time.sleep,
    on_error: Optional[Callable[[ServiceDescriptor, Exception], None]] = None,
) -> List[UpdateOutcome]:
    """Reconcile services one at a time, pausing `interval` seconds between them.

    A failing service is logged and reported to on_error; the pass carries on
    with the next one.
    """
    outcomes: List[UpdateOutcome] = []
    for i, service in enumerate(services):
        if i > 0:
            sleep(interval)
        try:
            outcome = reconcile_fn(service)
        except Exception as e:
            logger.error(f"Error reconciling service {service.name}: {e}")
            if on_error:
                on_error(service, e)
            continue
        if outcome is not None:
            outcomes.append(outcome)
    return outcomes
