#!/usr/bin/env python3
"""Write shield/core/build.py for the artifact being built.

Release builds use the checked-in file as is. Development builds regenerate it:
    python scripts/write_build_info.py --debug --variant development

Restore the release configuration with:
    python scripts/write_build_info.py
"""

import argparse
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
BUILD_MODULE = project_root / "shield" / "core" / "build.py"

PRODUCTION_VARIANT = "production"

TEMPLATE = '''"""Build-time configuration.

The values in this module are fixed when an artifact is built. The copy that
is checked in is the release configuration: ``DEBUG_BUILD`` is ``False`` and
the variant is ``production``. Development builds regenerate this file with
``scripts/write_build_info.py --debug``.

Nothing read at runtime (environment, settings, request data) can change
these values.
"""

from typing import Final

DEBUG_BUILD: Final[bool] = {debug!r}
BUILD_VARIANT: Final[str] = {variant!r}
'''


def render(debug: bool, variant: str) -> str:
    if debug and variant == PRODUCTION_VARIANT:
        raise ValueError("A debug build cannot use the production variant")
    return TEMPLATE.format(debug=debug, variant=variant)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--debug", action="store_true", help="produce a debug build")
    parser.add_argument("--variant", default=None, help="build variant label")
    args = parser.parse_args(argv)

    variant = args.variant or ("development" if args.debug else PRODUCTION_VARIANT)
    try:
        content = render(args.debug, variant)
    except ValueError as e:
        print(f"  ✗ {e}", file=sys.stderr)
        return 1

    BUILD_MODULE.write_text(content, encoding="utf-8")
    print(f"  ✓ {BUILD_MODULE.relative_to(project_root)} (debug={args.debug}, variant={variant})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
