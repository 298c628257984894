"""
Serverless WSGI entrypoint for the Chamba Tutorías backend.

Set DISABLE_STARTUP_MIGRATIONS=1 to skip the cold-start migrate call.
"""

import os
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "chamba_backend.settings")

_MIGRATED = False


def _startup_migrations_enabled() -> bool:
    if not os.environ.get("VERCEL", "").strip():
        return False
    return os.environ.get("DISABLE_STARTUP_MIGRATIONS", "").strip().lower() not in {"1", "true", "yes"}


def _migrate_once() -> None:
    global _MIGRATED
    if _MIGRATED or not _startup_migrations_enabled():
        return

    import django
    from django.core.management import call_command

    django.setup()
    call_command("migrate", interactive=False, verbosity=0)
    _MIGRATED = True


_migrate_once()

from django.core.wsgi import get_wsgi_application  # noqa: E402


app = get_wsgi_application()
