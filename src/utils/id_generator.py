"""Partition-prefixed identifier generation.

Identifiers look like ``GCE2025-ST-1729350000123456042``: the organizational
tag, a two-letter category code and a time-derived sequence. Generation claims
no slot anywhere, so it is safe to call concurrently. Global uniqueness comes
from the email invariant, not from these identifiers.
"""

import secrets
import time
from typing import Dict, Optional, Union

import config
from core.exceptions import InvalidCategoryError
from schemas.identity import Category

CATEGORY_CODES: Dict[Category, str] = {
    Category.STUDENT: "ST",
    Category.TEACHER: "TC",
    Category.EXAMINER: "EX",
    Category.ADMIN: "AD",
}


def new_id(category: Union[Category, str], org_tag: Optional[str] = None) -> str:
    """Generate a new identifier for a category.

    Args:
        category: Actor category the identifier is for.
        org_tag: Organizational tag; defaults to config.ORG_TAG.

    Returns:
        Identifier string ``<org-tag>-<code>-<sequence>``.

    Raises:
        InvalidCategoryError: If the category is outside the closed set.
    """
    try:
        code = CATEGORY_CODES[Category(category)]
    except ValueError:
        raise InvalidCategoryError(category) from None
    micros = time.time_ns() // 1000
    sequence = f"{micros}{secrets.randbelow(1000):03d}"
    return f"{org_tag or config.ORG_TAG}-{code}-{sequence}"
