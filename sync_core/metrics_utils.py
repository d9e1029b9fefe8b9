import os

from prometheus_client import Counter, start_http_server


def init_metrics(logger):
    """Start the Prometheus endpoint when METRICS_PORT is set.

    Returns a dict with keys: enabled, updates, failures, passes
    """
    result = {
        'enabled': False,
        'updates': None,
        'failures': None,
        'passes': None,
    }
    port = os.getenv('METRICS_PORT')
    if not port:
        return result
    addr = os.getenv('METRICS_ADDR', '0.0.0.0')
    try:
        start_http_server(int(port), addr=addr)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to start metrics: {e}")
        return result
    result['updates'] = Counter('swarmsync_updates_total', 'Number of service updates applied')
    result['failures'] = Counter('swarmsync_failures_total', 'Number of services that failed to reconcile')
    result['passes'] = Counter('swarmsync_passes_total', 'Number of completed reconciliation passes')
    result['enabled'] = True
    logger.info(f"Prometheus metrics server on {addr}:{port}")
    return result
