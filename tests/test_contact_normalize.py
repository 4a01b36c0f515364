"""
Tests for contact identifier normalization.
"""
import pytest

from api.services.contact_normalize import (
    is_valid_email,
    normalize_email,
    normalize_identifiers,
    normalize_phone,
)
from api.services.errors import InvalidInputError

pytestmark = pytest.mark.unit


class TestNormalizePhone:
    """Tests for normalize_phone function."""

    def test_plain_digits_unchanged(self):
        """Test that bare digit strings pass through."""
        assert normalize_phone("123456") == "123456"
        assert normalize_phone("9012295017") == "9012295017"

    def test_normalize_with_parentheses(self):
        """Test normalizing numbers with parentheses."""
        assert normalize_phone("(901) 229-5017") == "9012295017"

    def test_normalize_with_dashes_and_dots(self):
        """Test normalizing numbers with dashes and dots."""
        assert normalize_phone("901-229-5017") == "9012295017"
        assert normalize_phone("901.229.5017") == "9012295017"

    def test_leading_plus_kept(self):
        """Test that a leading + survives and no country code is added."""
        assert normalize_phone("+1 901 229 5017") == "+19012295017"
        assert normalize_phone("+447700900123") == "+447700900123"
        assert normalize_phone("9012295017") != normalize_phone("+19012295017")

    def test_surrounding_whitespace(self):
        """Test that surrounding whitespace is stripped."""
        assert normalize_phone("  123456 ") == "123456"

    def test_not_a_phone(self):
        """Test that letters and misplaced + are rejected."""
        assert normalize_phone("call me") is None
        assert normalize_phone("12a456") is None
        assert normalize_phone("12+3456") is None
        assert normalize_phone("+") is None

    def test_normalize_empty(self):
        """Test empty values return None."""
        assert normalize_phone("") is None
        assert normalize_phone("   ") is None
        assert normalize_phone("--") is None
        assert normalize_phone(None) is None


class TestNormalizeEmail:
    """Tests for normalize_email function."""

    def test_lowercase_by_default(self):
        """Test that case is folded."""
        assert normalize_email("Lorraine@HillValley.edu") == "lorraine@hillvalley.edu"

    def test_lowercase_disabled(self):
        """Test that case is kept when folding is off."""
        assert normalize_email("Doc@HillValley.edu", lowercase=False) == "Doc@HillValley.edu"

    def test_strip(self):
        """Test that whitespace is stripped."""
        assert normalize_email("  marty@hillvalley.edu\n") == "marty@hillvalley.edu"

    def test_empty(self):
        """Test empty values return None."""
        assert normalize_email("") is None
        assert normalize_email("   ") is None
        assert normalize_email(None) is None


class TestIsValidEmail:
    """Tests for is_valid_email function."""

    def test_valid(self):
        assert is_valid_email("a@x.com")
        assert is_valid_email("first.last+tag@mail.example.org")

    def test_invalid(self):
        assert not is_valid_email("not-an-email")
        assert not is_valid_email("a@b")
        assert not is_valid_email("a b@x.com")
        assert not is_valid_email("a@@x.com")
        assert not is_valid_email("")
        assert not is_valid_email(None)


class TestNormalizeIdentifiers:
    """Tests for normalize_identifiers function."""

    def test_both_values(self):
        """Test a full pair is normalized."""
        assert normalize_identifiers("Mcfly@HillValley.edu", "(123) 456") == (
            "mcfly@hillvalley.edu",
            "123456",
        )

    def test_email_only(self):
        assert normalize_identifiers("a@x.com", None) == ("a@x.com", None)

    def test_phone_only(self):
        assert normalize_identifiers(None, "123456") == (None, "123456")

    def test_empty_strings_count_as_absent(self):
        """Test that empty strings are dropped rather than stored."""
        assert normalize_identifiers("", "123456") == (None, "123456")
        assert normalize_identifiers("a@x.com", "  ") == ("a@x.com", None)

    def test_both_absent(self):
        """Test that at least one identifier is required."""
        with pytest.raises(InvalidInputError, match="At least one"):
            normalize_identifiers(None, None)
        with pytest.raises(InvalidInputError):
            normalize_identifiers("", " ")

    def test_invalid_email(self):
        with pytest.raises(InvalidInputError, match="Invalid email format"):
            normalize_identifiers("not-an-email", "123456")

    def test_invalid_phone(self):
        with pytest.raises(InvalidInputError, match="Invalid phone number format"):
            normalize_identifiers("a@x.com", "call me")

    def test_case_kept_when_disabled(self):
        assert normalize_identifiers("A@X.com", None, lowercase_emails=False) == ("A@X.com", None)


class TestDocstringExamples:
    """The examples in normalize_phone's docstring hold."""

    def test_doctests(self):
        import doctest
        from api.services import contact_normalize

        result = doctest.testmod(contact_normalize)

        assert result.attempted > 0
        assert result.failed == 0
