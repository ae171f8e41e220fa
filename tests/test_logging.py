"""Tests for log sanitization, formatting and user-facing error text."""

import json
import logging

from multisig_coordinator.shared.errors import ProposalConflict, StaleNonce
from multisig_coordinator.shared.logging import (
    ContextAdapter,
    HumanReadableFormatter,
    LoggingConfig,
    LogLevel,
    StructuredFormatter,
    format_error_for_user,
    get_user_friendly_error,
    sanitize_dict,
    sanitize_message,
)

PRIVATE_KEY = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ADDRESS = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"


def make_record(msg, args=(), context=None):
    record = logging.LogRecord(
        name="multisig_coordinator.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )
    if context is not None:
        record.context = context
    return record


class TestLoggingConfig:
    def test_defaults(self):
        config = LoggingConfig()
        assert config.log_level == LogLevel.INFO
        assert config.log_to_file is True
        assert config.log_to_stdout is False
        assert config.log_filename == "coordinator.log"

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("MULTISIG_COORDINATOR_LOG_LEVEL", "debug")
        monkeypatch.setenv("MULTISIG_COORDINATOR_LOG_STDOUT", "true")
        monkeypatch.setenv("MULTISIG_COORDINATOR_LOG_FILE", "0")
        config = LoggingConfig.from_environment()
        assert config.log_level == LogLevel.DEBUG
        assert config.log_to_stdout is True
        assert config.log_to_file is False

    def test_unknown_level_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("MULTISIG_COORDINATOR_LOG_LEVEL", "chatty")
        assert LoggingConfig.from_environment().log_level == LogLevel.INFO


class TestSanitization:
    def test_private_key_redacted(self):
        sanitized = sanitize_message(f"private_key=0x{PRIVATE_KEY}")
        assert PRIVATE_KEY not in sanitized
        assert "[REDACTED]" in sanitized

    def test_api_key_redacted(self):
        sanitized = sanitize_message("api_key: secret-token-123")
        assert "secret-token-123" not in sanitized

    def test_hash_kept(self):
        proposal_hash = "0x" + "ab" * 32
        assert sanitize_message(f"Executed {proposal_hash}") == f"Executed {proposal_hash}"

    def test_address_redaction_optional(self):
        assert ADDRESS in sanitize_message(f"owner {ADDRESS}")
        assert ADDRESS not in sanitize_message(
            f"owner {ADDRESS}", preserve_addresses=False
        )

    def test_sanitize_dict_redacts_sensitive_keys(self):
        data = sanitize_dict(
            {
                "relay_api_key": "abc",
                "nested": {"private_key": PRIVATE_KEY},
                "account": ADDRESS,
            }
        )
        assert data["relay_api_key"] == "[REDACTED]"
        assert data["nested"]["private_key"] == "[REDACTED]"
        assert data["account"] == ADDRESS


class TestFormatters:
    def test_structured_formatter_emits_json_with_context(self):
        formatter = StructuredFormatter()
        record = make_record("Endorsed by %s", (ADDRESS,), {"proposal_hash": "0x01"})
        data = json.loads(formatter.format(record))
        assert data["message"] == f"Endorsed by {ADDRESS}"
        assert data["context"] == {"proposal_hash": "0x01"}
        assert data["level"] == "INFO"

    def test_human_formatter_appends_context(self):
        formatter = HumanReadableFormatter()
        record = make_record("Executed", context={"account": ADDRESS})
        assert formatter.format(record).endswith(f"Executed [account={ADDRESS}]")

    def test_human_formatter_sanitizes_args(self):
        formatter = HumanReadableFormatter()
        record = make_record("Loaded %s", (f"private_key={PRIVATE_KEY}",))
        assert PRIVATE_KEY not in formatter.format(record)


class TestContextAdapter:
    def test_context_nested_under_extra(self):
        adapter = ContextAdapter(logging.getLogger("test"), {"account": ADDRESS})
        _, kwargs = adapter.process("message", {})
        assert kwargs["extra"] == {"context": {"account": ADDRESS}}

    def test_with_context_merges(self):
        adapter = ContextAdapter(logging.getLogger("test"), {"account": ADDRESS})
        child = adapter.with_context(proposal_hash="0x02")
        assert child.extra == {"account": ADDRESS, "proposal_hash": "0x02"}
        assert adapter.extra == {"account": ADDRESS}


class TestUserFriendlyErrors:
    def test_stale_nonce(self):
        error = StaleNonce("Stale nonce: proposal 0x01 was built for nonce 5")
        message, suggestion = get_user_friendly_error(error)
        assert "already been used" in message
        assert "Rebuild" in suggestion

    def test_conflict(self):
        error = ProposalConflict("A different proposal is already stored under 0x01")
        message, _ = get_user_friendly_error(error)
        assert "different proposal" in message

    def test_not_an_owner(self):
        message, _ = get_user_friendly_error(f"{ADDRESS} is not an owner of 0xabc")
        assert "not an owner" in message

    def test_unknown_error(self):
        message, suggestion = get_user_friendly_error("something odd")
        assert message == "An unexpected error occurred."
        assert suggestion is None

    def test_format_error_for_user_joins_suggestion(self):
        text = format_error_for_user("Connection timed out")
        assert text.startswith("Connection timed out.")
        assert "Try again later" in text
