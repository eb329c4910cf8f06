"""Tests for protocol logging module."""

import threading
from datetime import UTC, datetime

import httpx

from oidcauth.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    ProtocolLog,
    ProtocolLogger,
    configure_logging,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)


class TestRedactSensitive:
    """Tests for sensitive data redaction."""

    def test_redact_client_secret(self):
        """Test redacting client_secret in query string."""
        text = "client_secret=super-secret-value&client_id=my-app"
        result = redact_sensitive(text)
        assert "super-secret-value" not in result
        assert "[REDACTED]" in result
        assert "my-app" in result  # client_id should not be redacted

    def test_redact_refresh_grant(self):
        """Test redacting a refresh token form body."""
        text = "grant_type=refresh_token&refresh_token=rt-very-secret&scope=openid"
        result = redact_sensitive(text)
        assert "rt-very-secret" not in result
        assert "scope=openid" in result

    def test_redact_authorization_header(self):
        """Test redacting Authorization header."""
        text = "Authorization: Bearer my-secret-token"
        result = redact_sensitive(text)
        assert "my-secret-token" not in result
        assert "[REDACTED]" in result

    def test_redact_header_value(self):
        """Test redacting a bare header value as stored in header dicts."""
        assert redact_sensitive("Bearer eyJ.payload.sig") == "Bearer [REDACTED]"
        assert redact_sensitive("Basic dXNlcjpwYXNz") == "Basic [REDACTED]"

    def test_redact_json_fields(self):
        """Test redacting sensitive JSON fields."""
        text = '{"id_token": "a.b.c", "refresh_token": "rt-1", "token_type": "Bearer"}'
        result = redact_sensitive(text)
        assert "a.b.c" not in result
        assert "rt-1" not in result
        assert '"token_type": "Bearer"' in result

    def test_no_redact_normal_text(self):
        """Test that normal text is not modified."""
        text = "This is a normal log message without sensitive data."
        result = redact_sensitive(text)
        assert result == text


class TestHTTPExchange:
    """Tests for HTTPExchange dataclass."""

    def test_to_dict_without_sensitive(self):
        """Test serialization with sensitive data redacted."""
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC),
            method="POST",
            url="https://idp.example.com/token?client_secret=secret",
            request_headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Authorization": "Basic base64credentials",
            },
            request_body="grant_type=authorization_code&code=auth-code-123",
            response_status=200,
            response_body='{"access_token": "jwt-token-here", "token_type": "Bearer"}',
            duration_ms=150.5,
        )

        result = exchange.to_dict(include_sensitive=False)

        assert result["id"] == "test_001"
        assert result["method"] == "POST"
        assert "[REDACTED]" in result["url"]
        assert "[REDACTED]" in result["request_headers"]["Authorization"]
        assert "auth-code-123" not in result["request_body"]
        assert "jwt-token-here" not in result["response_body"]

    def test_to_dict_with_sensitive(self):
        """Test serialization with sensitive data included."""
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC),
            method="POST",
            url="https://idp.example.com/token?client_secret=secret",
            request_headers={"Authorization": "Basic base64credentials"},
            request_body="grant_type=authorization_code&code=auth-code-123",
        )

        result = exchange.to_dict(include_sensitive=True)

        assert "secret" in result["url"]
        assert "base64credentials" in result["request_headers"]["Authorization"]
        assert "auth-code-123" in result["request_body"]

    def test_format_log_info_level(self):
        """Test log formatting at INFO level."""
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime.now(UTC),
            method="GET",
            url="https://api.example.com/v1/profile",
            request_headers={},
            response_status=200,
            duration_ms=50.0,
        )

        log = exchange.format_log(LogLevel.INFO)
        assert "GET" in log
        assert "200" in log
        assert "50.0ms" in log
        # INFO level should not include headers
        assert "Request Headers" not in log

    def test_format_log_debug_level(self):
        """Test log formatting at DEBUG level."""
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime.now(UTC),
            method="GET",
            url="https://idp.example.com/userinfo",
            request_headers={"Authorization": "Bearer token"},
            response_status=200,
        )

        log = exchange.format_log(LogLevel.DEBUG)
        assert "Request Headers" in log
        assert "[REDACTED]" in log  # Authorization should be redacted

    def test_format_log_trace_level(self):
        """Test bodies only appear at TRACE level."""
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime.now(UTC),
            method="POST",
            url="https://idp.example.com/token",
            request_headers={},
            request_body="grant_type=refresh_token&refresh_token=rt-1",
            response_status=200,
        )

        assert "Request Body" not in exchange.format_log(LogLevel.DEBUG)
        log = exchange.format_log(LogLevel.TRACE)
        assert "Request Body" in log
        assert "rt-1" not in log
        assert "rt-1" in exchange.format_log(LogLevel.TRACE, include_sensitive=True)


class TestProtocolLog:
    """Tests for ProtocolLog dataclass."""

    def test_complete(self):
        """Test marking a log as complete."""
        log = ProtocolLog(operation_id="op_1", operation="token_refresh", account="alice (user-123)")
        assert log.completed_at is None

        log.complete()
        assert log.completed_at is not None

    def test_to_dict(self):
        """Test serializing a protocol log."""
        log = ProtocolLog(operation_id="op_1", operation="token_refresh", account="alice (user-123)")
        log.add_exchange(
            HTTPExchange(
                id="ex_001",
                timestamp=datetime.now(UTC),
                method="POST",
                url="https://idp.example.com/token",
                request_headers={},
            )
        )
        log.complete()

        result = log.to_dict()
        assert result["operation_id"] == "op_1"
        assert result["operation"] == "token_refresh"
        assert result["account"] == "alice (user-123)"
        assert result["exchange_count"] == 1
        assert result["completed_at"] is not None


class TestProtocolLogger:
    """Tests for ProtocolLogger class."""

    def test_default_log_level(self):
        """Test default log level is INFO."""
        logger = ProtocolLogger()
        assert logger.level == LogLevel.INFO

    def test_set_log_level(self):
        """Test setting log level."""
        logger = ProtocolLogger(level=LogLevel.DEBUG)
        assert logger.level == LogLevel.DEBUG

        logger.level = LogLevel.ERROR
        assert logger.level == LogLevel.ERROR

    def test_trace_requires_explicit_enable(self):
        """Test that TRACE level requires explicit enable."""
        assert ProtocolLogger(level=LogLevel.TRACE).effective_level == LogLevel.DEBUG
        assert ProtocolLogger(level=LogLevel.TRACE, trace_enabled=True).effective_level == LogLevel.TRACE

    def test_start_and_end_operation(self):
        """Test starting and ending an operation."""
        logger = ProtocolLogger()

        log = logger.start_operation("op_123", "code_exchange")
        assert log.operation_id == "op_123"
        assert logger.current_log is log

        result = logger.end_operation()
        assert result is log
        assert result.completed_at is not None
        assert logger.current_log is None
        assert logger.end_operation() is None

    def test_nested_operations(self):
        """Test an inner operation resumes the outer one when it ends."""
        logger = ProtocolLogger()
        outer = logger.start_operation("op_1", "api_call")
        inner = logger.start_operation("op_2", "token_refresh")

        assert logger.current_log is inner
        assert logger.end_operation() is inner
        assert logger.current_log is outer

    def test_operation_context(self):
        """Test the context manager completes the log even on errors."""
        logger = ProtocolLogger()

        try:
            with logger.operation("token_refresh", "alice (user-123)") as log:
                assert logger.current_log is log
                raise RuntimeError("refresh failed")
        except RuntimeError:
            pass

        assert log.operation_id.startswith("token_refresh_")
        assert log.account == "alice (user-123)"
        assert log.completed_at is not None
        assert logger.current_log is None

    def test_operations_are_per_thread(self):
        """Test an operation on another thread is not visible here."""
        logger = ProtocolLogger()
        logger.start_operation("main", "api_call")
        seen = []

        def worker():
            seen.append(logger.current_log)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen == [None]
        assert logger.current_log is not None

    def test_exchange_ids_are_unique(self):
        """Test exchange ids increase."""
        logger = ProtocolLogger()
        assert logger.next_exchange_id() != logger.next_exchange_id()

    def test_log_exchange(self):
        """Test logging an exchange."""
        logger = ProtocolLogger()
        log = logger.start_operation("op_123", "api_call")

        exchange = HTTPExchange(
            id="ex_001",
            timestamp=datetime.now(UTC),
            method="GET",
            url="https://api.example.com/v1/profile",
            request_headers={},
            response_status=200,
        )

        logger.log_exchange(exchange)
        assert len(log.exchanges) == 1


class TestLoggingClient:
    """Tests for the recording HTTP client."""

    def test_records_exchange(self):
        """Test a request and its response are recorded."""
        logger = ProtocolLogger()
        log = logger.start_operation("op_1", "api_call")
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="hello"))

        with LoggingClient(protocol_logger=logger, transport=transport) as client:
            client.post("https://api.example.com/items", content="payload")

        exchange = log.exchanges[0]
        assert exchange.method == "POST"
        assert exchange.request_body == "payload"
        assert exchange.response_status == 200
        assert exchange.response_body == "hello"
        assert exchange.duration_ms is not None

    def test_records_failure(self):
        """Test a failed request is recorded and the error re-raised."""
        logger = ProtocolLogger()
        log = logger.start_operation("op_1", "api_call")

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        client = LoggingClient(protocol_logger=logger, transport=httpx.MockTransport(refuse))
        try:
            client.get("https://api.example.com/items")
        except httpx.ConnectError:
            pass
        finally:
            client.close()

        assert "ConnectError" in (log.exchanges[0].error or "")


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_with_defaults(self):
        """Test configuring with default settings."""
        logger = configure_logging()
        assert logger.level == LogLevel.INFO
        assert not logger.trace_enabled

    def test_configure_with_string_level(self):
        """Test configuring with string log level."""
        logger = configure_logging(level="DEBUG")
        assert logger.level == LogLevel.DEBUG

    def test_configure_trace(self):
        """Test TRACE is honoured when enabled."""
        logger = configure_logging(level=LogLevel.TRACE, trace_enabled=True)
        assert logger.trace_enabled
        assert logger.effective_level == LogLevel.TRACE

    def test_configure_log_file(self, tmp_path):
        """Test logs are also written to a file."""
        log_file = tmp_path / "oidcauth.log"
        configure_logging(level="INFO", log_file=str(log_file))

        import logging

        logging.getLogger("oidcauth.test").info("hello file")
        for handler in logging.getLogger("oidcauth").handlers:
            handler.flush()

        assert "hello file" in log_file.read_text()


class TestGlobalLogger:
    """Tests for global logger management."""

    def test_get_protocol_logger(self):
        """Test getting the global protocol logger."""
        logger1 = get_protocol_logger()
        logger2 = get_protocol_logger()
        assert logger1 is logger2

    def test_set_protocol_logger(self):
        """Test setting the global protocol logger."""
        custom_logger = ProtocolLogger(level=LogLevel.DEBUG)
        set_protocol_logger(custom_logger)

        retrieved = get_protocol_logger()
        assert retrieved is custom_logger
        assert retrieved.level == LogLevel.DEBUG
