import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

message_id_var: ContextVar[Optional[str]] = ContextVar('message_id', default=None)
service_var: ContextVar[Optional[str]] = ContextVar('service', default=None)
resource_var: ContextVar[Optional[str]] = ContextVar('resource', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)

_CONTEXT_VARS = {
    'message_id': message_id_var,
    'service': service_var,
    'resource': resource_var,
    'stage': stage_var,
}

# Group 1 is the label kept in the output, group 2 the value to obscure.
_SECRET_PATTERNS = (
    # Catalog credentials and provider tokens
    r'(?i)\b(client_secret|access_token|refresh_token)\s*[:=]\s*["\']?([\w\-.]{8,})["\']?',
    # Anything else labelled like a credential, e.g. YouTube's api_key
    r'(?i)(token|key|secret|password|auth)\s*[:=]\s*["\']?([\w\-.]{10,})["\']?',
    r'(?i)(bearer)\s+([\w\-.]{20,})',
)

_PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _obscure(secret: str) -> str:
    if len(secret) <= 8:
        return '*' * len(secret)
    return secret[:4] + '*' * (len(secret) - 8) + secret[-4:]


class SecretMasker:
    """Obscures credentials in log text, keeping four characters at each end."""

    def __init__(self, extra_patterns: Iterable[str] = ()):
        self.compiled_patterns = [re.compile(p) for p in (*_SECRET_PATTERNS, *extra_patterns)]

    def mask_secrets(self, text: str) -> str:
        if not text:
            return text
        for pattern in self.compiled_patterns:
            text = pattern.sub(lambda m: f"{m.group(1)}: {_obscure(m.group(2))}", text)
        return text

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask_secrets(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [self._mask_value(item) for item in value]
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask every string found in ``data``, descending into lists and dicts."""
        if not data:
            return data
        return {key: self._mask_value(value) for key, value in data.items()}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with correlation values in camelCase."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def _timestamp(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        return stamp.isoformat().replace('+00:00', 'Z')

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'ts': self._timestamp(record),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for key, var in _CONTEXT_VARS.items():
            value = var.get()
            if value:
                log_entry[_camel(key)] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        fields = getattr(record, 'fields', None)
        if fields:
            log_entry['fields'] = self.masker.mask_dict(fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


class CorrelationContext:
    """Binds message, service, resource and stage to every record logged inside the block.

    Only the values passed in are set; the rest keep whatever an enclosing
    context set, and everything is restored on exit.
    """

    def __init__(self, message_id: Optional[str] = None,
                 service: Optional[str] = None,
                 resource: Optional[str] = None,
                 stage: Optional[str] = None):
        values = {'message_id': message_id, 'service': service,
                  'resource': resource, 'stage': stage}
        self._values = {k: v for k, v in values.items() if v is not None}
        self._tokens: List[tuple] = []

    def __enter__(self):
        self._tokens = [(_CONTEXT_VARS[key], _CONTEXT_VARS[key].set(value))
                        for key, value in self._values.items()]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  structured: bool = True) -> logging.Logger:
    """Configure the ``tunebridge`` logger; module loggers propagate to it.

    Records go to stderr, and also to ``log_file`` when one is given.
    Calling it again replaces the previous handlers.
    """
    logger = logging.getLogger('tunebridge')
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    formatter = StructuredFormatter() if structured else logging.Formatter(_PLAIN_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def get_logger(name: str = 'tunebridge') -> logging.Logger:
    """Logger under the ``tunebridge`` hierarchy configured by setup_logging."""
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None,
                    exc_info: bool = False, **kwargs):
    """Log message with additional fields."""
    merged = dict(fields or {})
    merged.update(kwargs)
    extra = {'fields': merged} if merged else None
    logger.log(getattr(logging, level.upper()), message, exc_info=exc_info, extra=extra)


def log_resolution_start(logger: logging.Logger, message_id: str,
                         services: Iterable[str], ref_count: int, **kwargs):
    """Log the start of a message resolution."""
    with CorrelationContext(message_id=message_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Resolution started', {
            'services': list(services),
            'ref_count': ref_count,
            **kwargs
        })


def log_resource_failure(logger: logging.Logger, resource: str, stage: str,
                         reason: str, **kwargs):
    """Log a single resource that contributes nothing to the resolution."""
    with CorrelationContext(resource=resource, stage=stage):
        log_with_fields(logger, 'WARNING', 'Resource skipped', {
            'reason': reason,
            **kwargs
        })


def log_resolution_complete(logger: logging.Logger, message_id: str,
                            resolved: int, failed: int, **kwargs):
    """Log the end of a message resolution."""
    with CorrelationContext(message_id=message_id, stage='complete'):
        log_with_fields(logger, 'INFO', 'Resolution completed', {
            'resolved': resolved,
            'failed': failed,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
