"""
Tests for logging sanitization and numeric/formatting helpers.
"""

import logging

import pytest

from ambient_volume.utils import (
    LOGGER_NAME,
    SecureLogger,
    format_address,
    format_duration,
    format_eth,
    format_tx_hash,
    format_usd,
    from_base_units,
    setup_logging,
    strip_key_prefix,
    to_base_units,
    truncate,
)


class TestTruncate:

    @pytest.mark.parametrize("value,places,expected", [
        (7.899, 2, 7.89),
        (0.00855, 4, 0.0085),
        (0.0019999, 3, 0.001),
        (5.0, 2, 5.0),
    ])
    def test_rounds_down(self, value, places, expected):
        assert truncate(value, places) == expected


class TestUnits:

    def test_to_base_units(self):
        assert to_base_units(12.34, 6) == 12_340_000
        assert to_base_units(0.0085, 18) == 8_500_000_000_000_000

    def test_from_base_units(self):
        assert from_base_units(1_500_000, 6) == 1.5
        assert from_base_units(0, 18) == 0.0


class TestSecureLogger:

    def test_redacts_private_keys(self):
        secure = SecureLogger(logging.getLogger("test"))
        key = "ab" * 32
        assert key not in secure._sanitize(f"loaded 0x{key}")
        assert "[KEY_REDACTED]" in secure._sanitize(f"loaded {key}")
        assert secure._sanitize("PRIVATE_KEYS=0xabc,0xdef") == "private_key=[REDACTED]"

    def test_addresses_untouched(self):
        secure = SecureLogger(logging.getLogger("test"))
        address = "0x06eFdBFf2a14a7c8E15944D1F4A48F9F95F663A4"
        assert secure._sanitize(f"wallet {address}") == f"wallet {address}"

    def test_log_file_written(self, tmp_path):
        log_file = tmp_path / "logs" / "bot.txt"
        logger = setup_logging("INFO", str(log_file))

        logger.info("Swap confirmed")
        logger.debug("hidden")
        for handler in logging.getLogger(LOGGER_NAME).handlers:
            handler.flush()

        content = log_file.read_text()
        assert "| INFO     | Swap confirmed" in content
        assert "hidden" not in content

        setup_logging("INFO", None)


class TestFormatting:

    def test_format_usd(self):
        assert format_usd(1234.5) == "$1,234.50"

    def test_format_eth(self):
        assert format_eth(0.0005) == "0.000500 ETH"
        assert format_eth(0.25) == "0.2500 ETH"
        assert format_eth(3) == "3.00 ETH"

    def test_format_address(self):
        address = "0x06eFdBFf2a14a7c8E15944D1F4A48F9F95F663A4"
        assert format_address(address, 4) == "0x06eF...63A4"

    def test_format_tx_hash(self):
        tx_hash = "0x" + "1" * 64
        short = format_tx_hash(tx_hash)
        assert short == "0x11111111...1111111111"

    def test_format_duration(self):
        assert format_duration(45) == "45s"
        assert format_duration(125) == "2m 5s"
        assert format_duration(3600) == "1h"

    def test_strip_key_prefix(self):
        assert strip_key_prefix("  0xABC ") == "ABC"
        assert strip_key_prefix("abc") == "abc"
