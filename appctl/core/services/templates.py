"""
Template renderer — expands ``*.template`` files in an app's data dir.

``foo.conf.template`` renders to ``foo.conf`` next to it. The output
first takes the template's permission bits and ownership, then
receives the substituted content, so it is indistinguishable in
metadata from the source.

Substitution understands ``$VAR`` and ``${VAR}``. Names the context
does not define are left as literal text, unless strict mode is on,
in which case nothing is written and TemplateError lists them.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Mapping
from pathlib import Path

from appctl.core.errors import TemplateError
from appctl.core.models.config import TEMPLATE_SUFFIX

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def substitute(
    text: str,
    env: Mapping[str, str],
    keep_unknown: bool = True,
) -> tuple[str, list[str]]:
    """Expand variable references in ``text``.

    Returns:
        (expanded text, sorted names that had no value).
    """
    missing: set[str] = set()

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        if name in env:
            return env[name]
        missing.add(name)
        return match.group(0) if keep_unknown else ""

    return _VAR_RE.sub(_replace, text), sorted(missing)


def find_templates(data_dir: Path) -> list[Path]:
    """Template files directly inside ``data_dir`` (not recursive)."""
    if not data_dir.is_dir():
        return []
    return sorted(
        p for p in data_dir.iterdir()
        if p.is_file() and p.name.endswith(TEMPLATE_SUFFIX) and p.name != TEMPLATE_SUFFIX
    )


def _copy_ownership(src: Path, dst: Path) -> None:
    st = src.stat()
    try:
        os.chown(dst, st.st_uid, st.st_gid)
    except PermissionError:
        # Only root may give files away; same-user ownership already matches
        logger.debug("Cannot copy ownership of %s onto %s", src, dst)


def render_templates(
    data_dir: Path,
    env: Mapping[str, str],
    strict: bool = False,
) -> list[Path]:
    """Render every template in ``data_dir``.

    Returns:
        Paths of the files written, in name order.

    Raises:
        TemplateError: In strict mode, if any template references an
            undefined variable. No file is written in that case.
    """
    rendered: list[tuple[Path, Path, str]] = []
    for template in find_templates(data_dir):
        content = template.read_text(encoding="utf-8")
        output, missing = substitute(content, env)
        if missing:
            if strict:
                raise TemplateError(template.name, missing)
            logger.debug("%s: leaving %s unresolved", template.name, ", ".join(missing))
        target = template.with_name(template.name[: -len(TEMPLATE_SUFFIX)])
        rendered.append((template, target, output))

    for template, target, output in rendered:
        target.touch(exist_ok=True)
        shutil.copymode(template, target)
        _copy_ownership(template, target)
        target.write_text(output, encoding="utf-8")
        logger.debug("Rendered %s → %s", template.name, target.name)

    return [target for _, target, _ in rendered]
