from __future__ import annotations

from compat_lens.cli import main

raise SystemExit(main())
