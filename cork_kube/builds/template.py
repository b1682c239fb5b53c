"""Template variable rendering for build options.

Build option values in .cork-build manifests may reference ``${KEY}``
variables: images of other repositories (``<alias>.<image>``), the
project's own images (``<project>.<image>``) and environment variables
(``ENV.<NAME>``).
"""

import re
from collections.abc import Mapping

from cork_kube.errors import TemplateError

TEMPLATE_VAR_PATTERN = re.compile(r"\$\{(.+?)\}")


def render_template(value: str, variables: Mapping[str, str]) -> str:
    """Replace every ``${KEY}`` in a string.

    Args:
        value: String to render.
        variables: Variable values.

    Returns:
        Rendered string.

    Raises:
        TemplateError: If a referenced variable is not defined.
    """

    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in variables:
            raise TemplateError(key)
        return str(variables[key])

    return TEMPLATE_VAR_PATTERN.sub(replace, value)


def render_options(
    options: Mapping[str, list[str]],
    variables: Mapping[str, str],
) -> dict[str, list[str]]:
    """Render every value of an ordered build option mapping.

    Args:
        options: Flag name -> values.
        variables: Variable values.

    Returns:
        New mapping with rendered values, in the original key order.
    """
    return {
        key: [render_template(v, variables) for v in values]
        for key, values in options.items()
    }


__all__ = ["TEMPLATE_VAR_PATTERN", "render_options", "render_template"]
