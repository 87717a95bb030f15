"""Email plausibility and password strength policy checks.

The email heuristics are best-effort fraud reduction, not RFC 5321
validation. Both checks report every violated rule at once.
"""

from __future__ import annotations

import re
from typing import FrozenSet, Iterable, List, Optional, Pattern

from email_validator import EmailNotValidError, validate_email as check_email_syntax

from app.config import settings
from app.core.exceptions import InvalidEmailError, WeakPasswordError


_SYMBOL = re.compile(r"[^A-Za-z0-9\s]")
_TLD = re.compile(r"^[a-z]{2,}$")

COMMON_PASSWORDS: FrozenSet[str] = frozenset({
    "password", "123456", "123456789", "welcome", "admin", "password123", "root", "toor",
    "pass", "12345678", "123123", "1234567890", "qwerty", "abc123", "password1",
    "admin123", "root123", "welcome123", "1qaz2wsx", "dragon", "master", "monkey",
    "letmein", "login", "princess", "qwertyuiop", "solo", "sunshine", "secret",
    "freedom", "whatever", "qazwsx", "football", "michael", "ninja", "mustang",
    "password12", "shadow", "master123", "696969", "superman", "michael1", "batman",
    "trustno1", "thomas", "robert", "abcdef", "matrix", "cheese", "hunter", "buster",
    "killer", "soccer", "harley", "ranger", "jordan", "andrew", "charles", "daniel",
    "compaq", "merlin", "starwars", "computer", "michelle", "jessica", "pepper",
    "test", "changeme", "andrea", "joshua", "love", "amanda", "ashley", "bailey",
    "passw0rd", "shadow1", "power", "fire", "hammer", "diamond", "important",
    "secure", "welcome1", "admin1", "system", "manager", "office", "internet",
    "service", "hello", "guest", "university", "default", "money", "coffee", "house",
    "family", "business", "music", "student", "forever", "friend", "orange",
    "flower", "beautiful", "summer", "p@ssw0rd", "p@ssword1",
    "passw0rd!", "qwerty123", "qwerty1!", "welcome1!", "admin@123", "abc@123",
})


def normalize_email(email: str) -> str:
    """Canonical form used for every lookup and stored value."""
    return (email or "").strip().lower()


class CredentialValidator:
    """Configurable email and password policy."""

    def __init__(
        self,
        *,
        min_length: int = 8,
        max_length: int = 128,
        blocked_domains: Iterable[str] = (),
        blocked_local_patterns: Iterable[str] = (),
        common_passwords: Optional[Iterable[str]] = None,
    ) -> None:
        self.min_length = min_length
        self.max_length = max_length
        self.blocked_domains = frozenset(d.strip().lower() for d in blocked_domains if d.strip())
        self.blocked_local_patterns: List[Pattern[str]] = [
            re.compile(pattern, re.IGNORECASE) for pattern in blocked_local_patterns
        ]
        passwords = COMMON_PASSWORDS if common_passwords is None else common_passwords
        self.common_passwords = frozenset(p.lower() for p in passwords)

    def validate_email(self, email: str) -> List[str]:
        """Return every email rule the (normalized) address violates."""
        try:
            parsed = check_email_syntax(normalize_email(email), check_deliverability=False)
        except EmailNotValidError as exc:
            return [f"Email is not valid: {exc}"]

        errors: List[str] = []
        local_part, domain = parsed.local_part.lower(), parsed.domain.lower()

        if local_part.isdigit():
            errors.append("Email name cannot be only numbers")
        elif any(pattern.search(local_part) for pattern in self.blocked_local_patterns):
            errors.append("Email name looks like a placeholder address")

        if domain in self.blocked_domains:
            errors.append("Disposable or test email domains are not allowed")
        if "." not in domain or not any(ch.isalpha() for ch in domain):
            errors.append("Email domain is not valid")
        elif not _TLD.match(domain.rsplit(".", 1)[1]):
            errors.append("Email domain must end in a valid top-level domain")

        return errors

    def validate_password(self, password: str) -> List[str]:
        """Return every password rule violated, never just the first."""
        password = password or ""
        errors: List[str] = []

        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters long")
        if len(password) > self.max_length:
            errors.append(f"Password must be at most {self.max_length} characters long")
        if not any(ch.isdigit() for ch in password):
            errors.append("Password must contain at least one number")
        if not _SYMBOL.search(password):
            errors.append("Password must contain at least one symbol (!@#$%^&*...)")
        if password.lower() in self.common_passwords:
            errors.append("Password is too common. Please choose a more unique password")

        return errors

    def ensure_valid_email(self, email: str) -> str:
        """Normalize and validate, raising InvalidEmailError with all violations."""
        errors = self.validate_email(email)
        if errors:
            raise InvalidEmailError(errors)
        return normalize_email(email)

    def ensure_strong_password(self, password: str) -> None:
        errors = self.validate_password(password)
        if errors:
            raise WeakPasswordError(errors)


credential_validator = CredentialValidator(
    min_length=settings.PASSWORD_MIN_LENGTH,
    max_length=settings.PASSWORD_MAX_LENGTH,
    blocked_domains=settings.EMAIL_BLOCKED_DOMAINS,
    blocked_local_patterns=settings.EMAIL_BLOCKED_LOCAL_PATTERNS,
)
