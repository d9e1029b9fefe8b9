import os
import re
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from google.auth import default
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request

from sync_core.errors import RegistryFetchError

DEFAULT_INDEX = 'docker.io'
DOCKER_HUB_API = 'registry-1.docker.io'
GCR_SCOPES = ['https://www.googleapis.com/auth/cloud-platform']

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_repository(name: str) -> Tuple[str, str, str]:
    """Split an image name into (registry host, remote path, canonical name).

    Any tag or digest is dropped. Official Docker Hub images get the
    'library/' namespace, e.g. 'nginx' -> ('docker.io', 'library/nginx',
    'docker.io/library/nginx').
    """
    name = name.split('@', 1)[0]
    last_slash = name.rfind('/')
    last_colon = name.rfind(':')
    if last_colon > last_slash:
        name = name[:last_colon]

    parts = name.split('/', 1)
    first = parts[0]
    if len(parts) > 1 and ('.' in first or ':' in first or first == 'localhost'):
        host, path = first.lower(), parts[1]
    else:
        host, path = DEFAULT_INDEX, name
    if host in ('index.docker.io', 'registry-1.docker.io'):
        host = DEFAULT_INDEX
    if host == DEFAULT_INDEX and '/' not in path:
        path = f"library/{path}"
    return host, path, f"{host}/{path}"


def detect_registry_type(host: str) -> str:
    """Infer how to list tags from the registry host."""
    host = host.lower()
    if host.endswith('.amazonaws.com') and '.ecr.' in host:
        return 'ecr'
    if host.endswith('gcr.io') or host.endswith('pkg.dev'):
        return 'gcr'
    return 'v2'


def retry_call(func, *args, attempts: int = 3, base: float = 1.0, logger=None, sleep=time.sleep, **kwargs):
    """Call func, retrying with exponential backoff; the last error is raised."""
    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if attempt >= attempts:
                raise
            delay = base * (2 ** (attempt - 1)) + (0.1 * attempt)
            if logger:
                logger.warning(f"Transient error: {e}. Retrying in {delay:.1f}s (attempt {attempt}/{attempts})")
            sleep(delay)


def _parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    scheme, _, params = header.partition(' ')
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(params))


class RegistryClient:
    """Lists repository tags across Docker v2, ECR and GCR registries.

    One instance is created at startup and shared for the whole process; it
    owns the HTTP session. `registries` maps a registry host to its settings
    (username/password, ECR region and keys, GCR service account path).
    """

    def __init__(self, registries: Optional[Dict[str, Dict[str, Any]]], logger, timeout: int = 10,
                 attempts: int = 3, session: Optional[requests.Session] = None, sleep=time.sleep):
        self.registries = registries or {}
        self.logger = logger
        self.timeout = timeout
        self.attempts = attempts
        self.session = session or requests.Session()
        self.sleep = sleep

    def _registry_config(self, host: str) -> Dict[str, Any]:
        return self.registries.get(host) or {}

    def list_tags(self, repository: str) -> List[str]:
        """Return the unordered tag list for a repository; raises RegistryFetchError."""
        host, path, canonical = parse_repository(repository)
        registry_type = detect_registry_type(host)
        try:
            if registry_type == 'ecr':
                tags = self._list_ecr_tags(host, path)
            elif registry_type == 'gcr':
                tags = self._list_gcr_tags(host, path)
            else:
                tags = self._list_v2_tags(host, path)
        except RegistryFetchError:
            raise
        except (requests.RequestException, ClientError, BotoCoreError, GoogleAuthError, ValueError) as e:
            raise RegistryFetchError(canonical, str(e)) from e
        self.logger.debug(f"Fetched {len(tags)} tags for {canonical}")
        return tags

    def _get(self, url: str, **kwargs) -> requests.Response:
        return retry_call(
            self.session.get, url, timeout=self.timeout,
            attempts=self.attempts, logger=self.logger, sleep=self.sleep, **kwargs
        )

    def _bearer_token(self, challenge: Dict[str, str], auth: Optional[Tuple[str, str]]) -> Optional[str]:
        realm = challenge.get('realm')
        if not realm:
            return None
        params = {k: v for k, v in challenge.items() if k in ('service', 'scope')}
        resp = self._get(realm, params=params, auth=auth)
        if resp.status_code != 200:
            raise RegistryFetchError(realm, f"token request returned {resp.status_code}")
        data = resp.json()
        return data.get('token') or data.get('access_token')

    def _authorize(self, resp: requests.Response, host: str) -> Dict[str, Any]:
        """Answer a 401 challenge with request kwargs for the retry."""
        config = self._registry_config(host)
        auth = None
        if config.get('username') and config.get('password'):
            auth = (config['username'], config['password'])
        scheme, challenge = _parse_challenge(resp.headers.get('WWW-Authenticate', ''))
        if scheme == 'bearer':
            token = self._bearer_token(challenge, auth)
            if token:
                return {'headers': {'Authorization': f'Bearer {token}'}}
        elif scheme == 'basic' and auth:
            return {'auth': auth}
        raise RegistryFetchError(host, f"unauthorized ({resp.status_code})")

    def _list_v2_tags(self, host: str, path: str, headers: Optional[Dict[str, str]] = None) -> List[str]:
        """Walk /v2/<path>/tags/list, following Link pagination."""
        api_host = DOCKER_HUB_API if host == DEFAULT_INDEX else host
        headers = dict(headers or {})
        headers.setdefault('Accept', 'application/json')
        url = f"https://{api_host}/v2/{path}/tags/list"
        tags: List[str] = []
        auth = None
        authorized = 'Authorization' in headers
        while url:
            resp = self._get(url, headers=headers, auth=auth)
            if resp.status_code == 401 and not authorized:
                answer = self._authorize(resp, host)
                headers.update(answer.get('headers', {}))
                auth = answer.get('auth')
                authorized = True
                continue
            if resp.status_code != 200:
                raise RegistryFetchError(f"{host}/{path}", f"{resp.status_code} {resp.text}")
            tags.extend(resp.json().get('tags') or [])
            next_url = resp.links.get('next', {}).get('url')
            url = urljoin(url, next_url) if next_url else None
        return tags

    def _list_ecr_tags(self, host: str, path: str) -> List[str]:
        """Fetch tags from AWS ECR via describe_images."""
        config = self._registry_config(host)
        region = config.get('region') or host.split('.')[3]
        aws_access_key_id = config.get('aws_access_key_id')
        aws_secret_access_key = config.get('aws_secret_access_key')
        if aws_access_key_id and aws_secret_access_key:
            ecr_client = boto3.client(
                'ecr',
                region_name=region,
                aws_access_key_id=aws_access_key_id,
                aws_secret_access_key=aws_secret_access_key,
            )
        else:
            ecr_client = boto3.client('ecr', region_name=region)

        tags: List[str] = []
        params: Dict[str, Any] = {'repositoryName': path, 'maxResults': 100}
        while True:
            response = retry_call(
                ecr_client.describe_images, attempts=self.attempts, logger=self.logger, sleep=self.sleep, **params
            )
            for image_detail in response.get('imageDetails', []):
                tags.extend(image_detail.get('imageTags', []))
            next_token = response.get('nextToken')
            if not next_token:
                break
            params['nextToken'] = next_token
        return tags

    def _list_gcr_tags(self, host: str, path: str) -> List[str]:
        """Fetch tags from Google Container Registry / Artifact Registry."""
        config = self._registry_config(host)
        service_account_path = config.get('service_account_path')
        if service_account_path:
            os.environ['GOOGLE_APPLICATION_CREDENTIALS'] = service_account_path

        credentials, _ = default(scopes=GCR_SCOPES)
        credentials.refresh(Request())
        return self._list_v2_tags(host, path, headers={'Authorization': f'Bearer {credentials.token}'})
