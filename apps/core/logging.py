"""
Custom logging formatters, filters and security event logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    API_KEY_PATTERN = re.compile(r'(api[_-]?key|token|secret|password|auth)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)

    # Sensitive field names that should be masked
    SENSITIVE_FIELDS = {
        'email', 'email_address',
        'password', 'password_hash', 'passwd',
        'api_key', 'access_token', 'refresh_token', 'bearer_token', 'token',
        'secret', 'secret_key',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text
        def mask_email_match(match):
            email = match.group(0)
            username, _, domain = email.partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"
        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_api_keys(cls, text):
        """Mask API keys, tokens, and secrets in text."""
        if not isinstance(text, str):
            return text
        return cls.API_KEY_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_api_keys(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value and not isinstance(value, (dict, list)) else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)
        return masked


class SanitizingFilter(logging.Filter):
    """Mask PII in the rendered message before any handler sees it."""

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = PIIMasker.mask_text(record.msg)
        return True


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and tenant_id from extra fields if available.
    Automatically masks sensitive PII data.
    """

    RESERVED = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'taskName', 'request_id', 'tenant_id',
    }

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        if hasattr(record, 'tenant_id'):
            log_data['tenant_id'] = str(record.tenant_id)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        # Add any extra fields
        for key, value in record.__dict__.items():
            if key in self.RESERVED or key.startswith('_'):
                continue
            try:
                if isinstance(value, dict):
                    masked_value = PIIMasker.mask_dict(value)
                else:
                    masked_value = PIIMasker.mask_text(value)
                json.dumps(masked_value)  # Test if serializable
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized security event logging.

    Authorization denials and storage-guard rejections are logged on the
    'security' logger with structured data. Events that indicate the two
    enforcement tiers disagree, or that authorization could not be computed,
    are critical and are also sent to Sentry.
    """

    CRITICAL_EVENTS = {
        'authorization_fault',
        'enforcement_divergence',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'permission_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, tenant_id, module, ...)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_permission_denied(user_id, tenant_id, module: str, action: str, path: str = None):
        """Log an API request rejected by the authorizer."""
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=str(user_id) if user_id else None,
            tenant_id=str(tenant_id) if tenant_id else None,
            module_name=module,
            action=action,
            path=path,
        )

    @staticmethod
    def log_forbidden_write(user_id, tenant_id, table: str, action: str, record_id=None):
        """Log a write rejected by the storage guard."""
        SecurityLogger.log_event(
            'forbidden_write',
            level='warning',
            user_id=str(user_id) if user_id else None,
            tenant_id=str(tenant_id) if tenant_id else None,
            table=table,
            action=action,
            record_id=str(record_id) if record_id else None,
        )

    @staticmethod
    def log_authorization_fault(user_id, tenant_id, reason: str):
        """Log a failure to compute permissions; the request is denied."""
        SecurityLogger.log_event(
            'authorization_fault',
            level='error',
            user_id=str(user_id) if user_id else None,
            tenant_id=str(tenant_id) if tenant_id else None,
            reason=reason,
        )

    @staticmethod
    def log_failed_login(email: str, ip_address: str = None, reason: str = None):
        """Log a rejected login attempt."""
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            email=email,
            ip_address=ip_address,
            reason=reason,
        )
