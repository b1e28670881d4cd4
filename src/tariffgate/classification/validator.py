"""HS-code validator contract and a basic reference implementation."""

from __future__ import annotations

import re
from typing import Dict, FrozenSet, List, Protocol, runtime_checkable

from tariffgate.classification.types import ValidationContext, ValidationIssue, ValidationReport

ERROR_WEIGHT = 25.0
WARNING_WEIGHT = 10.0
RESERVED_CHAPTERS = frozenset({"77"})

_NON_DIGITS = re.compile(r"[^0-9]")
_ZERO_RUN = re.compile(r"0{4,}")


@runtime_checkable
class HSCodeValidator(Protocol):
    def validate_hs_code(self, context: ValidationContext) -> ValidationReport:
        ...


def _chapters(*spans: tuple[int, int]) -> FrozenSet[str]:
    return frozenset(f"{n:02d}" for start, end in spans for n in range(start, end + 1))


# category -> (preferred chapters, chapters that rarely fit the category)
CATEGORY_CHAPTERS: Dict[str, tuple[FrozenSet[str], FrozenSet[str]]] = {
    "Electronics": (_chapters((84, 85), (90, 91)), _chapters((1, 5))),
    "Textiles": (_chapters((50, 63)), _chapters((84, 85), (90, 90))),
    "Machinery": (_chapters((84, 84)), _chapters((1, 5))),
    "Chemicals": (_chapters((28, 38)), _chapters((84, 85), (94, 95))),
}


def digits_of(hs_code: str) -> str:
    return _NON_DIGITS.sub("", hs_code or "")


class BasicHSCodeValidator:
    """Format, chapter, category and history checks.

    Scores start at 100 and lose 25 per error and 10 per warning.
    """

    def validate_hs_code(self, context: ValidationContext) -> ValidationReport:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []
        digits = digits_of(context.hs_code)

        if not digits:
            errors.append(ValidationIssue("HS code cannot be empty", "format-basic"))
        else:
            if len(digits) < 6:
                errors.append(ValidationIssue("HS code must be at least 6 digits (HS6 level)", "format-basic"))
            if len(digits) > 10:
                errors.append(ValidationIssue("HS code cannot exceed 10 digits", "format-basic"))
            if digits.startswith("00"):
                errors.append(ValidationIssue("HS codes cannot start with 00", "format-basic"))
            if _ZERO_RUN.search(digits):
                warnings.append(
                    ValidationIssue(
                        "Multiple consecutive zeros detected. Please verify this is correct",
                        "format-basic",
                    )
                )

        if len(digits) >= 2:
            chapter = digits[:2]
            if not 1 <= int(chapter) <= 97:
                errors.append(
                    ValidationIssue(f"Invalid HS chapter: {chapter}. Must be between 01-97", "format-chapter")
                )
            if chapter in RESERVED_CHAPTERS:
                errors.append(
                    ValidationIssue(
                        f"Chapter {chapter} is reserved and not used in HS classification", "format-chapter"
                    )
                )
            self._check_category(context, chapter, warnings)
            self._check_history(context, chapter, warnings)

        score = max(0.0, min(100.0, 100.0 - ERROR_WEIGHT * len(errors) - WARNING_WEIGHT * len(warnings)))
        return ValidationReport(score=score, errors=errors, warnings=warnings)

    @staticmethod
    def _check_category(context: ValidationContext, chapter: str, warnings: List[ValidationIssue]) -> None:
        rules = CATEGORY_CHAPTERS.get(context.product_category or "")
        if rules is None:
            return
        preferred, unlikely = rules
        if chapter in unlikely:
            warnings.append(
                ValidationIssue(
                    f"HS chapter {chapter} is not typically used for {context.product_category} products",
                    "business-category-match",
                    suggestion=f"Consider chapters: {', '.join(sorted(preferred))}",
                )
            )

    @staticmethod
    def _check_history(context: ValidationContext, chapter: str, warnings: List[ValidationIssue]) -> None:
        previous = sorted({digits_of(code)[:2] for code in context.existing_classifications if digits_of(code)})
        if len(previous) > 1 and chapter not in previous:
            warnings.append(
                ValidationIssue(
                    f"HS chapter {chapter} differs from previous classifications",
                    "accuracy-consistency",
                    suggestion=f"Previous classifications used chapters: {', '.join(previous)}",
                )
            )
