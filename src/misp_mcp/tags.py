"""Tag filter expressions for MISP restSearch queries."""

from __future__ import annotations

from collections.abc import Sequence

AND = "&&"
NOT = "!"


def chain(
    included: Sequence[str] | None,
    excluded: Sequence[str] | None,
) -> str:
    """Combine required and excluded tags into one MISP tag expression.

    Tags are inserted verbatim. Excluded tags are negated with ``!``.

        >>> chain(["+tag1", "+tag2"], ["-tag1"])
        '+tag1&&+tag2&&!-tag1'
        >>> chain([], ["-tag1", "-tag2"])
        '!-tag1&&!-tag2'
    """
    expression = ""
    for i, tag in enumerate(included or ()):
        if i == 0:
            expression = tag
        else:
            expression += AND + tag
    for i, tag in enumerate(excluded or ()):
        # No leading separator when nothing was included
        if i == 0 and expression == "":
            expression = NOT + tag
        else:
            expression += AND + NOT + tag
    return expression
