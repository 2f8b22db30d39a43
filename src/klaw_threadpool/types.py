"""Constrained type aliases for decode-time validation.

These aliases carry msgspec constraints that are enforced when options are
built from plain mappings (``msgspec.convert``) or decoded from bytes, so a
misconfigured call fails when its options are parsed instead of mid-run.

Usage:
    >>> from klaw_threadpool.protocol import MessageOptions
    >>> MessageOptions.parse({'timeout': 5})
    MessageOptions(timeout=5.0, terminate=None, terminate_key='terminate', return_event=False)
    >>> MessageOptions.parse({'timeout': -1})
    # ValidationError: Expected `float` >= 0.0 - at `$.timeout`
"""

from __future__ import annotations

from typing import Annotated

import msgspec

__all__ = ['TerminateKey', 'TimeoutSeconds']

TimeoutSeconds = Annotated[float, msgspec.Meta(ge=0.0, le=86400.0)]
"""Timeout duration in seconds.

Valid range: 0.0 to 86400.0 (24 hours, inclusive). Zero disables the timeout.
"""

TerminateKey = Annotated[
    str,
    msgspec.Meta(
        min_length=1,
        max_length=255,
        pattern=r'^[A-Za-z_][A-Za-z0-9_]*$',
    ),
]
"""Attribute name under which a persistent proxy exposes its terminate function."""
