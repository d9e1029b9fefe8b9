import copy
from typing import Any, Dict, List, Optional, Tuple

import requests
from docker.errors import APIError, DockerException

from sync_core.errors import UpdateConflictError, UpdateTransportError
from sync_core.models import DEFAULT_TAG, ServiceDescriptor, TagPattern

TRUTHY = ('1', 'true', 'yes', 'on')


def split_image_reference(image: str) -> Tuple[str, str]:
    """Return (repository, tag) for an image reference, dropping any digest.

    The tag defaults to 'latest'; a registry port ('host:5000/app') is not a tag.
    """
    image = image.split('@', 1)[0]
    last_colon = image.rfind(':')
    if last_colon > image.rfind('/'):
        return image[:last_colon], image[last_colon + 1:] or DEFAULT_TAG
    return image, DEFAULT_TAG


def is_managed(labels: Optional[Dict[str, str]], label_prefix: str) -> bool:
    value = (labels or {}).get(f"{label_prefix}.managed")
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY


def build_service_descriptors(records: List[Dict[str, Any]], label_prefix: str = 'swarm-sync') -> List[ServiceDescriptor]:
    """Normalize raw swarm service records, keeping only managed services."""
    descriptors: List[ServiceDescriptor] = []
    for record in records:
        spec = record.get('Spec') or {}
        labels = spec.get('Labels') or {}
        if not is_managed(labels, label_prefix):
            continue
        image = ((spec.get('TaskTemplate') or {}).get('ContainerSpec') or {}).get('Image')
        if not image:
            # nothing to reconcile against
            continue
        repository, tag = split_image_reference(image)
        descriptors.append(
            ServiceDescriptor(
                id=record['ID'],
                name=spec.get('Name', record['ID']),
                current_image_repository=repository,
                current_image_tag=tag,
                tag_pattern=TagPattern.parse(labels.get(f"{label_prefix}.image-pattern")),
            )
        )
    return descriptors


def list_service_records(docker_client) -> List[Dict[str, Any]]:
    """Return the raw attrs of every service in the swarm."""
    return [service.attrs for service in docker_client.services.list()]


def _is_conflict(error: APIError) -> bool:
    return error.status_code == 409 or 'out of sequence' in str(error).lower()


def update_service_image(docker_client, service_id: str, image: str, logger) -> None:
    """Point a service at a new image and force its tasks to be replaced.

    The version index read at inspect time goes with the update, so a
    concurrent change makes the daemon reject it (UpdateConflictError).
    """
    try:
        service = docker_client.services.get(service_id)
        spec = service.attrs['Spec']
        version = int(service.attrs['Version']['Index'])

        task_template = copy.deepcopy(spec.get('TaskTemplate') or {})
        task_template.setdefault('ContainerSpec', {})['Image'] = image
        task_template['ForceUpdate'] = int(task_template.get('ForceUpdate') or 0) + 1

        logger.info(f"Updating service {spec.get('Name', service_id)} to image {image}")
        docker_client.api.update_service(
            service_id,
            version,
            task_template=task_template,
            name=spec.get('Name'),
            fetch_current_spec=True,
        )
    except APIError as e:
        if _is_conflict(e):
            raise UpdateConflictError(service_id, image, e.explanation or str(e)) from e
        raise UpdateTransportError(service_id, image, str(e)) from e
    except (DockerException, requests.RequestException) as e:
        raise UpdateTransportError(service_id, image, str(e)) from e
