from __future__ import annotations

import re
from dataclasses import dataclass, field

from loguru import logger

NUMBER = "NUMBER"
TIMEFRAME = "TIMEFRAME"
APP = "APP"
DEVICE = "DEVICE"
CONTACT = "CONTACT"

_WEEKDAYS = r"monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_MONTHS = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)
_TIME_UNITS = r"week|weekend|month|year|night|morning|afternoon|evening"
# Words that mark a bare m/d as a date rather than a fraction such as "1/2 mile".
_DATE_CONTEXT = ("on", "since", "from", "until", "till", "by", "before", "after", "dated")

DEFAULT_APP_NAMES: tuple[str, ...] = (
    "Google Fit",
    "Samsung Health",
    "Apple Health",
    "Health Connect",
    "MyFitnessPal",
    "My Fitness Pal",
    "Garmin Connect",
    "Nike Run Club",
    "Fitbit",
    "Strava",
    "Garmin",
)

DEFAULT_DEVICE_NAMES: tuple[str, ...] = (
    "Apple Watch",
    "Galaxy Watch",
    "Pixel Watch",
    "Samsung Galaxy",
    "Google Pixel",
    "iPhone",
    "Galaxy",
    "Pixel",
    "OnePlus",
    "Xiaomi",
    "Samsung",
)

# Whitespace-separated whole words, at most three, so a failed match backtracks linearly.
_MODEL_TOKEN = r"(?:\s+(?:\d{1,2}[a-z]?|[a-z]\d{1,3}|pro|plus|max|mini|ultra|lite|fold\d?|flip\d?|fe|se)\b){0,3}"

_NUMBER_PATTERN = re.compile(r"(?<![\d,])\d{1,3}(?:,\d{3})+(?![\d,]?\d)|(?<!\d)\d{3,}(?!\d)")
_TIMEFRAME_PATTERNS = (
    re.compile(rf"\b(?:last|this|next|past)\s+(?:{_TIME_UNITS}|{_WEEKDAYS})s?\b", re.IGNORECASE),
    re.compile(r"\b(?:yesterday|today|tomorrow|tonight)\b", re.IGNORECASE),
    re.compile(rf"\b(?:{_WEEKDAYS})s?\b", re.IGNORECASE),
)

_RESIDUAL_LONG_NUMBER = re.compile(r"\d{4,}")
_RESIDUAL_MONTH_DAY = (
    re.compile(rf"\b(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?\b", re.IGNORECASE),
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTHS})\b", re.IGNORECASE),
    re.compile(r"\b(?:0?[1-9]|1[0-2])/(?:0?[1-9]|[12]\d|3[01])/(?:\d{2}\b|\[NUMBER\])"),
    re.compile(
        "(?:" + "|".join(rf"(?<=\b{word}\s)" for word in _DATE_CONTEXT) + ")"
        r"(?:0?[1-9]|1[0-2])/(?:0?[1-9]|[12]\d|3[01])\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:0?[1-9]|1[0-2])-(?:0?[1-9]|[12]\d|3[01])-(?=\d|\[)"),
)
_RESIDUAL_EMAIL = re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b")


def _placeholder(category: str) -> str:
    return f"[{category}]"


class SanitizationError(Exception):
    """Raised in strict mode when PHI survives redaction.

    Only the length of the offending text and the residual category are kept;
    the text itself is never attached to the exception.
    """

    def __init__(self, text_length: int, category: str):
        self.text_length = text_length
        self.category = category
        super().__init__(
            f"Sensitive data ({category.lower()}) remained after sanitization "
            f"(content length: {text_length} chars)"
        )


@dataclass(frozen=True)
class SanitizationResult:
    sanitized_text: str
    had_phi: bool
    replacements: list[tuple[str, int]] = field(default_factory=list)

    @property
    def replacement_count(self) -> int:
        return sum(count for _, count in self.replacements)


def _alternation(names: tuple[str, ...]) -> str:
    # Longest first so "Samsung Health" wins over "Samsung".
    ordered = sorted({n.strip() for n in names if n.strip()}, key=lambda n: (-len(n), n.lower()))
    return "|".join(r"\s+".join(re.escape(part) for part in name.split()) for name in ordered)


class PhiSanitizer:
    def __init__(
        self,
        *,
        strict: bool = True,
        extra_app_names: tuple[str, ...] = (),
        extra_device_names: tuple[str, ...] = (),
    ):
        self._strict = strict
        self._app_pattern = re.compile(
            rf"\b(?:{_alternation(DEFAULT_APP_NAMES + tuple(extra_app_names))})\b",
            re.IGNORECASE,
        )
        self._device_pattern = re.compile(
            rf"\b(?:{_alternation(DEFAULT_DEVICE_NAMES + tuple(extra_device_names))})\b{_MODEL_TOKEN}",
            re.IGNORECASE,
        )

    @property
    def strict(self) -> bool:
        return self._strict

    def sanitize(self, text: str) -> SanitizationResult:
        """Redact PHI from ``text``.

        Passes run in a fixed order (numbers, timeframes, apps, devices), then
        the output is checked for residual signatures. Strict mode raises
        :class:`SanitizationError` on a residual; permissive mode redacts it.
        """
        if not text:
            return SanitizationResult(sanitized_text=text or "", had_phi=False, replacements=[])

        counts: dict[str, int] = {}
        sanitized = self._redact_passes(text, counts)

        residual = self._find_residual(sanitized)
        if residual is not None:
            if self._strict:
                logger.warning(
                    f"Sanitization blocked input: residual {residual.lower()} "
                    f"(content length: {len(text)} chars)"
                )
                raise SanitizationError(len(text), residual)
            sanitized = self._redact_residuals(sanitized, counts)

        replacements = [(category, n) for category, n in counts.items() if n > 0]
        if replacements:
            logger.debug(
                f"Sanitized input ({len(text)} chars): "
                + ", ".join(f"{category}={n}" for category, n in replacements)
            )
        return SanitizationResult(
            sanitized_text=sanitized,
            had_phi=bool(replacements),
            replacements=replacements,
        )

    def redact(self, text: str) -> str:
        """Best-effort redaction that never raises, whatever the configured policy."""
        if not text:
            return text or ""
        counts: dict[str, int] = {}
        sanitized = self._redact_passes(text, counts)
        return self._redact_residuals(sanitized, counts)

    def scrub_names(self, text: str) -> str:
        """Redact names, relative dates and e-mail addresses but keep numbers.

        Meant for operational text such as log lines, where counts and
        durations must stay readable.
        """
        counts: dict[str, int] = {}
        scrubbed = self._substitute(_RESIDUAL_EMAIL, CONTACT, text, counts)
        for pattern in _TIMEFRAME_PATTERNS:
            scrubbed = self._substitute(pattern, TIMEFRAME, scrubbed, counts)
        scrubbed = self._substitute(self._app_pattern, APP, scrubbed, counts)
        return self._substitute(self._device_pattern, DEVICE, scrubbed, counts)

    def _redact_passes(self, text: str, counts: dict[str, int]) -> str:
        sanitized = self._substitute(_NUMBER_PATTERN, NUMBER, text, counts)
        for pattern in _TIMEFRAME_PATTERNS:
            sanitized = self._substitute(pattern, TIMEFRAME, sanitized, counts)
        sanitized = self._substitute(self._app_pattern, APP, sanitized, counts)
        sanitized = self._substitute(self._device_pattern, DEVICE, sanitized, counts)
        return sanitized

    def _redact_residuals(self, text: str, counts: dict[str, int]) -> str:
        sanitized = self._substitute(_RESIDUAL_EMAIL, CONTACT, text, counts)
        for pattern in _RESIDUAL_MONTH_DAY:
            sanitized = self._substitute(pattern, TIMEFRAME, sanitized, counts)
        return self._substitute(_RESIDUAL_LONG_NUMBER, NUMBER, sanitized, counts)

    def _find_residual(self, text: str) -> str | None:
        if _RESIDUAL_EMAIL.search(text):
            return CONTACT
        if any(p.search(text) for p in _RESIDUAL_MONTH_DAY):
            return TIMEFRAME
        if _RESIDUAL_LONG_NUMBER.search(text):
            return NUMBER
        return None

    @staticmethod
    def _substitute(pattern: re.Pattern[str], category: str, text: str, counts: dict[str, int]) -> str:
        result, n = pattern.subn(_placeholder(category), text)
        if n:
            counts[category] = counts.get(category, 0) + n
        return result
