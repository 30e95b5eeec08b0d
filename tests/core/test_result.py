"""Tests for the Ok/Err result types."""

import pytest

from kestrel_delegation.core.result import Err, Ok


class TestResult:
    def test_ok(self):
        result = Ok(42)

        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == 42
        assert result.unwrap_or(0) == 42
        assert repr(result) == "Ok(42)"

    def test_err(self):
        result = Err("bad input", code="INVALID")

        assert result.is_err()
        assert result.unwrap_or("fallback") == "fallback"
        assert repr(result) == "Err('bad input', code='INVALID')"
        with pytest.raises(ValueError, match="bad input"):
            result.unwrap()

    def test_equality(self):
        assert Ok(1) == Ok(1)
        assert Ok(1) != Ok(2)
        assert Err("x", code="A") == Err("x", code="A")
        assert Err("x", code="A") != Err("x", code="B")
        assert Ok("x") != Err("x")
