#!/usr/bin/env python3
"""
Swarm Sync
Keeps Docker Swarm services on the newest registry tag matching their
image-pattern label, rolling a service forward whenever a newer tag appears.
"""

import argparse
import fcntl
import os
import sys
import time
from datetime import datetime
from typing import List, Optional

import docker
import requests
from docker.errors import DockerException
from dotenv import load_dotenv

from sync_core import config_utils as cu
from sync_core import metrics_utils as mu
from sync_core import notify_utils as nu
from sync_core import reconcile_utils as rcu
from sync_core import swarm_utils as sw
from sync_core.errors import SyncError
from sync_core.logging_utils import setup_logging
from sync_core.models import ServiceDescriptor, SyncConfig, UpdateOutcome
from sync_core.registry_utils import RegistryClient

ENV_FILE = '/etc/swarm-sync/.env'
INSTANCE_LOCK_PATHS = ['/var/run/swarm-sync/app.lock', '/tmp/swarm-sync-app.lock']

if os.path.exists(ENV_FILE):
    load_dotenv(ENV_FILE)


class SwarmSync:
    """Reconciles managed swarm services against their registries."""

    def __init__(self, config_file: str = None):
        if config_file is None:
            config_file = os.getenv('CONFIG_FILE', '/etc/swarm-sync/config.json')
        self.config_file = config_file
        self.config = SyncConfig()
        self.docker_client = None
        self._lock_fd = None
        self.logger = setup_logging()
        self.load_config()
        self.init_docker_client()
        self.registry = RegistryClient(
            self.config.registries,
            self.logger,
            timeout=self.config.registry_timeout,
            attempts=self.config.registry_retries,
        )
        self.init_metrics()

    def load_config(self):
        """Load configuration, writing a default file on first start."""
        if not os.path.exists(self.config_file):
            self.config_file = cu.create_default_config(self.config_file, self.logger)
        try:
            self.config = cu.load_config(self.config_file, self.logger)
        except Exception as e:
            self.logger.error(f"Invalid configuration file {self.config_file}: {e}")
            sys.exit(1)

    def init_docker_client(self):
        """Connect to the Docker daemon (one client for the process lifetime)."""
        try:
            if self.config.docker_host:
                self.docker_client = docker.DockerClient(
                    base_url=self.config.docker_host, timeout=self.config.docker_timeout
                )
            else:
                self.docker_client = docker.from_env(timeout=self.config.docker_timeout)
            self.docker_client.ping()
            self.logger.info("Docker client initialized successfully")
        except DockerException as e:
            self.logger.error(f"Failed to initialize Docker client: {e}")
            sys.exit(1)

    def init_metrics(self):
        m = mu.init_metrics(self.logger)
        self.metrics_enabled = m['enabled']
        self.counter_updates = m['updates']
        self.counter_failures = m['failures']
        self.counter_passes = m['passes']

    def discover_services(self) -> List[ServiceDescriptor]:
        records = sw.list_service_records(self.docker_client)
        return sw.build_service_descriptors(records, self.config.label_prefix)

    def update_service_image(self, service_id: str, image: str) -> None:
        sw.update_service_image(self.docker_client, service_id, image, self.logger)

    def reconcile_service(self, service: ServiceDescriptor) -> Optional[UpdateOutcome]:
        return rcu.reconcile(service, self.registry.list_tags, self.update_service_image, self.logger)

    def _on_failure(self, service: ServiceDescriptor, error: Exception):
        if getattr(self, 'counter_failures', None):
            self.counter_failures.inc()
        nu.notify_event(self.config.webhook_url, 'failure', {
            'service': service.name,
            'image': service.current_image,
            'error': str(error),
            'error_type': type(error).__name__,
        }, self.logger)

    def check_and_update_images(self) -> List[UpdateOutcome]:
        """Run one reconciliation pass over every managed service."""
        services = self.discover_services()
        if not services:
            self.logger.info("No swarm-sync managed services found in swarm")
            return []

        self.logger.info(f"Found {len(services)} swarm-sync managed services")
        outcomes = rcu.run_pass(
            services,
            self.reconcile_service,
            self.config.update_interval,
            self.logger,
            on_error=self._on_failure,
        )
        for outcome in outcomes:
            if getattr(self, 'counter_updates', None):
                self.counter_updates.inc()
            nu.notify_event(self.config.webhook_url, 'update', outcome.as_dict(), self.logger)
        if getattr(self, 'counter_passes', None):
            self.counter_passes.inc()
        self.logger.info(f"Pass complete: {len(outcomes)} of {len(services)} services updated")
        return outcomes

    def acquire_instance_lock(self) -> bool:
        """Hold a process-wide lock so that passes never overlap across agents."""
        for path in INSTANCE_LOCK_PATHS:
            try:
                os.makedirs(os.path.dirname(path), exist_ok=True)
                fd = open(path, 'w')
            except OSError:
                continue
            try:
                fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                fd.close()
                return False
            self._lock_fd = fd
            return True
        return False

    def run(self):
        """Main execution loop."""
        self.logger.info("Swarm Sync starting...")
        self.logger.info(f"Check interval: {self.config.check_interval} seconds")
        self.logger.info(f"Update interval: {self.config.update_interval} seconds")

        try:
            while True:
                if os.getenv('PAUSE_UPDATES', '0').lower() in ('1', 'true', 'yes'):
                    self.logger.info("Updates paused via PAUSE_UPDATES; sleeping")
                elif not self._in_maintenance_window(os.getenv('MAINTENANCE_WINDOW')):
                    self.logger.debug("Outside maintenance window; skipping this cycle")
                else:
                    try:
                        self.check_and_update_images()
                    except Exception as e:
                        self.logger.error(f"Reconciliation pass failed: {e}")
                self.logger.info(f"Sleeping for {self.config.check_interval} seconds...")
                time.sleep(self.config.check_interval)

        except KeyboardInterrupt:
            self.logger.info("Received interrupt signal. Shutting down...")

    def _in_maintenance_window(self, window_spec: Optional[str], now=None) -> bool:
        """Return True if the current local time falls within any given window.

        window_spec: comma-separated list of HH:MM-HH:MM (24h) ranges.
        Crossing midnight supported (e.g., 23:00-01:00). No spec means always.
        """
        if not window_spec:
            return True
        now = now or datetime.now().time()
        for token in [w.strip() for w in window_spec.split(',') if w.strip()]:
            try:
                start_s, end_s = token.split('-')
                start = datetime.strptime(start_s.strip(), '%H:%M').time()
                end = datetime.strptime(end_s.strip(), '%H:%M').time()
            except ValueError:
                self.logger.warning(f"Ignoring malformed maintenance window '{token}'")
                continue
            if start <= end:
                if start <= now <= end:
                    return True
            elif now >= start or now <= end:
                # window crosses midnight
                return True
        return False

    def test_environment(self) -> bool:
        """Check Docker connectivity and that each managed repository can be listed."""
        ok = True
        try:
            self.docker_client.ping()
            print('Docker connectivity: OK')
            services = self.discover_services()
        except DockerException as e:
            print(f'Docker connectivity: FAIL - {e}')
            return False
        for service in services:
            try:
                tags = self.registry.list_tags(service.current_image_repository)
                print(f'Registry for {service.name}: OK ({len(tags)} tags)')
            except SyncError as e:
                print(f'Registry for {service.name}: FAIL - {e}')
                ok = False
        return ok


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Swarm Sync')
    parser.add_argument('--config', dest='config', help='Path to the JSON or YAML config file')
    parser.add_argument('--once', action='store_true', help='Run a single reconciliation pass and exit')
    parser.add_argument('--test', action='store_true', help='Test Docker connectivity and registry access and exit')
    args = parser.parse_args()

    agent = SwarmSync(config_file=args.config)

    if args.test:
        sys.exit(0 if agent.test_environment() else 1)

    if not agent.acquire_instance_lock():
        agent.logger.error("Another instance appears to be running; exiting")
        sys.exit(1)

    if args.once:
        try:
            agent.check_and_update_images()
        except (DockerException, requests.RequestException, SyncError) as e:
            agent.logger.error(f"Reconciliation pass failed: {e}")
            sys.exit(1)
        sys.exit(0)

    agent.run()


if __name__ == "__main__":
    main()
