"""
Logging Configuration
Console/file logging with optional JSON output and timed lifecycle operations
"""

import json
import logging
import logging.config
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type

# LogRecord attributes that are not caller-supplied extras
_RECORD_FIELDS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {'message', 'asctime'}

class StructuredFormatter(logging.Formatter):
    """JSON formatter carrying scenario/stage extras as top-level keys"""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in _RECORD_FIELDS:
                    log_data[key] = value

        return json.dumps(log_data, ensure_ascii=False, default=str)

def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> None:
    """
    Setup application logging

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, logs to console only)
        json_format: Use JSON structured logging
        max_bytes: Maximum bytes per log file
        backup_count: Number of backup files to keep
    """
    if isinstance(level, str):
        level = level.upper()

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            },
            'detailed': {
                'format': '%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d: %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'level': level,
                'formatter': 'standard',
                'stream': sys.stdout,
            }
        },
        'loggers': {
            'services': {
                'level': level,
                'handlers': ['console'],
                'propagate': False
            },
            'utils': {
                'level': level,
                'handlers': ['console'],
                'propagate': False
            },
            'config': {
                'level': level,
                'handlers': ['console'],
                'propagate': False
            },
            'scripts': {
                'level': level,
                'handlers': ['console'],
                'propagate': False
            },
            # Engine echo is noisy below WARNING
            'sqlalchemy': {
                'level': 'WARNING',
                'handlers': ['console'],
                'propagate': False
            }
        },
        'root': {
            'level': level,
            'handlers': ['console']
        }
    }

    if json_format:
        config['formatters']['json'] = {
            '()': StructuredFormatter,
            'include_extra': True
        }
        config['handlers']['console']['formatter'] = 'json'

    if log_file:
        config['handlers']['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': level,
            'formatter': 'json' if json_format else 'detailed',
            'filename': log_file,
            'maxBytes': max_bytes,
            'backupCount': backup_count,
            'encoding': 'utf-8',
        }

        for logger_config in config['loggers'].values():
            logger_config['handlers'].append('file')

        config['root']['handlers'].append('file')

    logging.config.dictConfig(config)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured: level={level}, json={json_format}, file={log_file}")

class LogOperation:
    """
    Context manager timing one lifecycle operation for a scenario.

    The current stage is moved forward with enter_stage(); the closing
    record names the stage the operation ended in, so a failure or a
    cancellation shows where the run stopped. Exceptions of a type in
    ``cancelled_on`` close with status 'cancelled' at INFO instead of
    'failed' at ERROR. Exceptions are never suppressed.
    """

    def __init__(self, operation_name: str, logger_name: str = 'services.lifecycle',
                 scenario_id: Optional[int] = None, extra_data: Optional[Dict[str, Any]] = None,
                 cancelled_on: Tuple[Type[BaseException], ...] = ()):
        self.operation_name = operation_name
        self.logger = logging.getLogger(logger_name)
        self.scenario_id = scenario_id
        self.extra_data = extra_data or {}
        self.cancelled_on = cancelled_on
        self.stage: Optional[str] = None
        self.stages = []
        self.start_time = None
        self.duration = 0.0

    def _context(self) -> Dict[str, Any]:
        context = {'operation': self.operation_name, 'stage': self.stage, **self.extra_data}
        if self.scenario_id is not None:
            context['scenario_id'] = self.scenario_id
        return context

    @property
    def _label(self) -> str:
        if self.scenario_id is None:
            return self.operation_name
        return f"{self.operation_name} for scenario {self.scenario_id}"

    def enter_stage(self, stage: str) -> None:
        if stage == self.stage:
            return
        self.stage = stage
        self.stages.append(stage)
        self.logger.debug(f"{self._label}: {stage}", extra={**self._context(), 'status': 'running'})

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.info(f"Starting {self._label}", extra={**self._context(), 'status': 'started'})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.monotonic() - self.start_time
        log_data = {**self._context(), 'duration_ms': round(self.duration * 1000, 2)}

        if exc_type is None:
            log_data['status'] = 'completed'
            self.logger.info(f"{self._label} completed", extra=log_data)
        elif self.cancelled_on and issubclass(exc_type, self.cancelled_on):
            log_data['status'] = 'cancelled'
            self.logger.info(f"{self._label} cancelled during {self.stage}", extra=log_data)
        else:
            log_data['status'] = 'failed'
            log_data['error'] = str(exc_val)
            log_data['error_type'] = exc_type.__name__
            self.logger.error(f"{self._label} failed during {self.stage}", extra=log_data)
        return False

__all__ = [
    'setup_logging',
    'LogOperation',
    'StructuredFormatter',
]
