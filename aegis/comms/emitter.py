# aegis/comms/emitter.py
import os
import sys
import json
import socket
import logging
from typing import Any, Dict, Optional

from aegis.comms.telemetry_sender import TelemetrySender
from aegis.core.models.data_models import TickResult

logger = logging.getLogger(__name__)


def resolve_hostname(environ=None) -> str:
    environ = os.environ if environ is None else environ
    try:
        hostname = socket.gethostname()
        if hostname and hostname.strip():
            return hostname.strip()
    except OSError:
        pass

    hostname = (environ.get('HOSTNAME') or "").strip()
    return hostname or "unknown-host"


def build_event(result: TickResult, agent_id: str, host: str) -> Dict[str, Any]:
    """Telemetry event in the collector's JSON schema"""
    sample = result.sample
    event = {
        'type': 'telemetry',
        'timestamp': sample.timestamp,
        'agentId': agent_id,
        'host': host,
        'baselineReady': bool(result.baseline_ready),
        'fs': {
            'modifiedPerSec': sample.files_modified_per_sec,
            'createdPerSec': sample.files_created_per_sec,
            'deletedPerSec': sample.files_deleted_per_sec,
            'approxRenamesPerSec': sample.approx_renames_per_sec,
        },
        'disk': {
            'writeBytesPerSec': sample.disk_write_bytes_per_sec,
        },
        'topWriter': {
            'pid': sample.top_pid,
            'comm': sample.top_comm,
            'writeBytesPerSec': sample.top_write_bytes_per_sec,
        },
    }

    if result.anomaly is not None:
        event['anomaly'] = {
            'score': result.anomaly.anomaly_score,
            'maxAbsZ': result.anomaly.max_abs_z,
            'flags': list(result.anomaly.flags),
        }

    if result.classifier is not None:
        event['classifier'] = {
            'ransomwareScore': result.classifier.ransomware_score,
            'verdict': result.classifier.verdict.value,
            'confidence': result.classifier.confidence,
        }

    return event


def build_sender(config) -> Optional[TelemetrySender]:
    """Sender for the configured backend, or None for local-only emission"""
    if not config.post_telemetry:
        logger.info("Telemetry POST disabled by configuration")
        return None
    try:
        return TelemetrySender(
            backend_url=config.backend_url,
            token=config.aegis_token,
            timeout_ms=config.post_timeout_ms,
            queue_max=config.post_queue_max
        )
    except ValueError as e:
        logger.warning(f"Telemetry POST disabled: {e}")
        return None


class TelemetryEmitter:
    """Writes one JSON line per tick to a stream and forwards it to the sender"""

    def __init__(self, agent_id: str, sender: Optional[TelemetrySender] = None, stream=None, host: str = None):
        self.agent_id = agent_id
        self.sender = sender
        self.stream = stream
        self.host = host or resolve_hostname()

    def emit(self, result: TickResult) -> Optional[str]:
        """Serialize and publish a tick result; never raises"""
        if result is None or result.sample is None:
            return None
        try:
            payload = json.dumps(build_event(result, self.agent_id, self.host), separators=(',', ':'))
            stream = self.stream or sys.stdout
            stream.write(payload + "\n")
            stream.flush()
            if self.sender is not None:
                self.sender.enqueue(payload)
            return payload
        except Exception as e:
            logger.error(f"Failed to emit telemetry: {e}")
            return None

    def close(self) -> None:
        if self.sender is not None:
            self.sender.close()
