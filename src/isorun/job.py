"""Job encoder: renders the script a child interpreter runs for one test."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

_JOB_TEMPLATE = """\
import sys
sys.path[:0] = {sys_path!r}
{bootstrap}from isorun.child import run_isolated
run_isolated({test_id!r})
"""

_BOOTSTRAP_TEMPLATE = "import runpy\nrunpy.run_path({path!r})\n"


def child_sys_path(extra: Sequence[str] = ()) -> list[str]:
    """Import path for the child: *extra* entries first, then the parent's.

    Empty entries (the current directory) are dropped since the child adds
    its own.
    """
    paths: list[str] = []
    for entry in [*extra, *sys.path]:
        if entry and entry not in paths:
            paths.append(entry)
    return paths


def build_job(
    test_id: str,
    *,
    extra_sys_path: Sequence[str] = (),
    bootstrap: str | None = None,
) -> str:
    """Render the job script that runs *test_id* in isolation.

    Args:
        test_id: Dotted ``unittest`` name, e.g. ``"pkg.test_mod.TestX.test_y"``.
        extra_sys_path: Import paths to prepend in the child.
        bootstrap: Optional Python file to execute before the test runs.

    Returns:
        Python source for the child interpreter.
    """
    return _JOB_TEMPLATE.format(
        sys_path=child_sys_path(extra_sys_path),
        bootstrap=_BOOTSTRAP_TEMPLATE.format(path=bootstrap) if bootstrap else "",
        test_id=test_id,
    )
