"""Entry point for `python -m kubetemplate`.

Usage:
    KUBETEMPLATE_TEMPLATE=app.conf.j2 python -m kubetemplate
"""

from __future__ import annotations

import asyncio

from kubetemplate.app import main

asyncio.run(main())
