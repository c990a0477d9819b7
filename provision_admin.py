"""Seed the privileged profile for an existing sign-in account.

Usage: python provision_admin.py admin@example.com [more@example.com ...]

Without arguments the addresses in PRIVILEGED_EMAILS are provisioned. Each email
must already belong to a Firebase Auth user. Running it again is harmless.
"""
import asyncio
import logging
import sys

from firebase_admin import auth
from firebase_admin import exceptions as firebase_exceptions

from config.firebase_config import initialize_firebase
from config.settings import get_settings
from services.identity_service import IdentityResolver
from services.presence_service import PresenceTracker

logger = logging.getLogger("provision_admin")


async def provision(emails) -> int:
    settings = get_settings()
    db = initialize_firebase()
    resolver = IdentityResolver(db, PresenceTracker(db, users_collection=settings.users_collection),
                                emails, settings.users_collection)
    failures = 0
    for email in emails:
        try:
            record = await asyncio.to_thread(auth.get_user_by_email, email)
        except auth.UserNotFoundError:
            logger.error("No sign-in account for %s; create it first", email)
            failures += 1
            continue
        except firebase_exceptions.FirebaseError as e:
            logger.error("Could not look up %s: %s", email, e)
            failures += 1
            continue
        await resolver.provision_privileged(record.uid, email)
        logger.info("Provisioned %s (uid %s) as administrator", email, record.uid)
    return failures


def main() -> int:
    logging.basicConfig(level=get_settings().log_level, format="%(levelname)s %(name)s: %(message)s")
    emails = [e.lower() for e in sys.argv[1:]] or sorted(get_settings().privileged_emails)
    if not emails:
        logger.error("Pass at least one email or set PRIVILEGED_EMAILS")
        return 2
    return 1 if asyncio.run(provision(emails)) else 0


if __name__ == '__main__':
    sys.exit(main())
