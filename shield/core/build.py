"""Build-time configuration.

The values in this module are fixed when an artifact is built. The copy that
is checked in is the release configuration: ``DEBUG_BUILD`` is ``False`` and
the variant is ``production``. Development builds regenerate this file with
``scripts/write_build_info.py --debug``.

Nothing read at runtime (environment, settings, request data) can change
these values.
"""

from typing import Final

DEBUG_BUILD: Final[bool] = False
BUILD_VARIANT: Final[str] = 'production'
