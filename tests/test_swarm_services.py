import logging
from types import SimpleNamespace

import pytest
import requests
from docker.errors import APIError

from sync_core.errors import UpdateConflictError, UpdateTransportError
from sync_core.swarm_utils import (
    build_service_descriptors,
    is_managed,
    list_service_records,
    split_image_reference,
    update_service_image,
)

logger = logging.getLogger('test')


def make_record(name, image, labels=None, service_id=None):
    return {
        'ID': service_id or f'id-{name}',
        'Version': {'Index': 42},
        'Spec': {
            'Name': name,
            'Labels': labels if labels is not None else {},
            'TaskTemplate': {'ContainerSpec': {'Image': image}},
        },
    }


def test_split_image_reference():
    assert split_image_reference('myimage') == ('myimage', 'latest')
    assert split_image_reference('nginx:1.25') == ('nginx', '1.25')
    assert split_image_reference('nginx:1.25@sha256:abc') == ('nginx', '1.25')
    assert split_image_reference('localhost:5000/app') == ('localhost:5000/app', 'latest')
    assert split_image_reference('localhost:5000/app:2.0') == ('localhost:5000/app', '2.0')


def test_is_managed_accepts_truthy_values():
    assert is_managed({'swarm-sync.managed': 'true'}, 'swarm-sync')
    assert is_managed({'swarm-sync.managed': 'TRUE'}, 'swarm-sync')
    assert is_managed({'swarm-sync.managed': '1'}, 'swarm-sync')
    assert not is_managed({'swarm-sync.managed': 'false'}, 'swarm-sync')
    assert not is_managed({}, 'swarm-sync')
    assert not is_managed(None, 'swarm-sync')


def test_build_descriptors_filters_unmanaged_and_normalizes():
    records = [
        make_record('api', 'registry.example.com/api:5.1@sha256:deadbeef',
                    {'swarm-sync.managed': 'true', 'swarm-sync.image-pattern': 'glob:5.*'}),
        make_record('db', 'postgres:15', {'swarm-sync.managed': 'false'}),
        make_record('cache', 'redis:7'),
        make_record('worker', 'myimage', {'swarm-sync.managed': 'true'}),
    ]
    descriptors = build_service_descriptors(records)

    assert [d.name for d in descriptors] == ['api', 'worker']
    api, worker = descriptors
    assert api.id == 'id-api'
    assert api.current_image_repository == 'registry.example.com/api'
    assert api.current_image_tag == '5.1'
    assert api.tag_pattern.pattern == '5.*'

    assert worker.current_image_tag == 'latest'
    assert worker.tag_pattern.type == 'glob'
    assert worker.tag_pattern.pattern == 'latest'


def test_build_descriptors_honours_label_prefix():
    records = [make_record('api', 'api:1', {'acme.managed': 'yes', 'swarm-sync.managed': 'true'})]
    assert [d.name for d in build_service_descriptors(records, 'acme')] == ['api']
    assert build_service_descriptors([make_record('x', 'x:1', {'acme.managed': 'yes'})]) == []


def test_build_descriptors_skips_records_without_image():
    bare = make_record('bare', 'unused', {'swarm-sync.managed': 'true'})
    bare['Spec']['TaskTemplate'] = None
    no_spec = make_record('nospec', 'unused', {'swarm-sync.managed': 'true'})
    no_spec['Spec']['TaskTemplate'] = {'ContainerSpec': None}
    ok = make_record('api', 'api:1', {'swarm-sync.managed': 'true'})
    assert [d.name for d in build_service_descriptors([bare, no_spec, ok])] == ['api']


def test_list_service_records_returns_attrs():
    client = SimpleNamespace(services=SimpleNamespace(
        list=lambda: [SimpleNamespace(attrs={'ID': 'a'}), SimpleNamespace(attrs={'ID': 'b'})]
    ))
    assert list_service_records(client) == [{'ID': 'a'}, {'ID': 'b'}]


class FakeAPI:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def update_service(self, service_id, version, **kwargs):
        self.calls.append((service_id, version, kwargs))
        if self.error:
            raise self.error


def api_error(explanation):
    response = SimpleNamespace(
        status_code=500, url='http+docker://localhost/v1.41/services/id-api/update', reason='Internal Server Error'
    )
    return APIError('500 Server Error', response=response, explanation=explanation)


def make_client(record, error=None):
    api = FakeAPI(error)
    services = SimpleNamespace(get=lambda service_id: SimpleNamespace(attrs=record))
    return SimpleNamespace(services=services, api=api)


def test_update_service_image_sends_version_and_forces_update():
    record = make_record('api', 'api:1.0', {'swarm-sync.managed': 'true'})
    record['Spec']['TaskTemplate']['ForceUpdate'] = 3
    client = make_client(record)

    update_service_image(client, 'id-api', 'api:1.1', logger)

    service_id, version, kwargs = client.api.calls[0]
    assert (service_id, version) == ('id-api', 42)
    assert kwargs['task_template']['ContainerSpec']['Image'] == 'api:1.1'
    assert kwargs['task_template']['ForceUpdate'] == 4
    assert kwargs['fetch_current_spec'] is True
    # the inspected spec is left untouched
    assert record['Spec']['TaskTemplate']['ContainerSpec']['Image'] == 'api:1.0'


def test_update_service_image_out_of_sequence_is_conflict():
    error = api_error('update out of sequence')
    client = make_client(make_record('api', 'api:1.0'), error)
    with pytest.raises(UpdateConflictError):
        update_service_image(client, 'id-api', 'api:1.1', logger)


def test_update_service_image_other_api_errors_are_transport():
    error = api_error('rpc error: code = Unknown')
    client = make_client(make_record('api', 'api:1.0'), error)
    with pytest.raises(UpdateTransportError):
        update_service_image(client, 'id-api', 'api:1.1', logger)


def test_update_service_image_connection_error_is_transport():
    client = make_client(make_record('api', 'api:1.0'), requests.ConnectionError('socket closed'))
    with pytest.raises(UpdateTransportError):
        update_service_image(client, 'id-api', 'api:1.1', logger)
