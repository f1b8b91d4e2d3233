from __future__ import annotations

import os
import sys

# get_caller -> leveled method -> application code.
CALLER_SKIP = 2


def get_caller(skip: int = CALLER_SKIP) -> dict[str, str] | None:
    """Describe the frame `skip` levels above this function.

    Frame 0 is `get_caller` itself, so the default points at whoever called
    the function that called us. Returns ``{"file": "<basename>:<line>",
    "func": "<module>.<qualname>"}`` or None when the stack is not that deep.

    The depth is fixed: an extra wrapper between the application and the
    leveled method shifts attribution by one frame without any error.
    """
    try:
        frame = sys._getframe(skip)
    except ValueError:
        return None

    code = frame.f_code
    module = frame.f_globals.get("__name__", "")
    func = f"{module}.{code.co_qualname}" if module else code.co_qualname

    return {
        "file": f"{os.path.basename(code.co_filename)}:{frame.f_lineno}",
        "func": func,
    }
