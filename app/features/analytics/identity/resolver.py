"""
Identity resolution and test-account exclusion.

Accounts are mapped to contact handles (email first, wallet otherwise) and a
request-scoped ``TestExclusionSet`` decides which accounts, handles and
sessions are internal test traffic.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from app.features.analytics.domain.models import Account, ContactHandle, Session
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STRUCTURAL_TEST_EMAIL_MARKERS = ("@example.com", "+")


def is_structural_test_email(email: str) -> bool:
    return any(marker in email for marker in STRUCTURAL_TEST_EMAIL_MARKERS)


@dataclass(frozen=True, slots=True)
class TestExclusionSet:
    """Everything that marks activity as internal test traffic for one request."""

    __test__ = False

    test_emails: frozenset[str]
    wallet_prefixes: tuple[str, ...]
    excluded_account_ids: frozenset[str]
    excluded_handles: frozenset[ContactHandle]
    test_artist_ids: frozenset[str]

    def is_test_email(self, email: str) -> bool:
        return email in self.test_emails or is_structural_test_email(email)

    def is_test_wallet(self, wallet: str) -> bool:
        return wallet.startswith(self.wallet_prefixes) if self.wallet_prefixes else False

    def excludes_account(self, account: Account) -> bool:
        if account.account_id in self.excluded_account_ids:
            return True
        if not account.is_contactable:
            return True
        return any(self.excludes_handle(handle) for handle in account.handles)

    def excludes_handle(self, handle: ContactHandle) -> bool:
        if handle in self.excluded_handles:
            return True
        if handle.kind == "email":
            return self.is_test_email(handle.value)
        return self.is_test_wallet(handle.value)

    def excludes_session(self, session: Session) -> bool:
        if session.account_id in self.excluded_account_ids:
            return True
        return session.artist_id is not None and session.artist_id in self.test_artist_ids


class AccountDirectory:
    """Lookup of accounts by id and by email handle."""

    def __init__(self, accounts: Iterable[Account]):
        self._by_id: dict[str, Account] = {}
        self._by_email: dict[str, Account] = {}
        for account in accounts:
            self._by_id[account.account_id] = account
            if account.email:
                self._by_email.setdefault(account.email, account)

    def __iter__(self):
        return iter(self._by_id.values())

    def get(self, account_id: str) -> Account | None:
        return self._by_id.get(account_id)

    def by_email(self, email: str) -> Account | None:
        return self._by_email.get(email)

    def primary_handle(self, account_id: str) -> ContactHandle | None:
        account = self._by_id.get(account_id)
        return account.primary_handle if account else None


def build_exclusion_set(
    accounts: Iterable[Account],
    test_emails: Iterable[str],
    wallet_prefixes: Iterable[str],
    test_artist_ids: Iterable[str] = (),
) -> TestExclusionSet:
    """
    Build the exclusion set for one request.

    An account is excluded when any of its handles is a test handle, so a
    wallet account linked to a test email is excluded together with every
    handle it owns. Accounts with no handle at all are never allowed.
    """
    listed_emails = frozenset(email for email in test_emails if email)
    prefixes = tuple(prefix for prefix in wallet_prefixes if prefix)

    matcher = TestExclusionSet(
        test_emails=listed_emails,
        wallet_prefixes=prefixes,
        excluded_account_ids=frozenset(),
        excluded_handles=frozenset(),
        test_artist_ids=frozenset(),
    )

    excluded_ids: set[str] = set()
    excluded_handles: set[ContactHandle] = set()
    uncontactable = 0

    for account in accounts:
        if not account.is_contactable:
            excluded_ids.add(account.account_id)
            uncontactable += 1
            continue
        if matcher.excludes_account(account):
            excluded_ids.add(account.account_id)
            excluded_handles.update(account.handles)

    exclusion_set = TestExclusionSet(
        test_emails=listed_emails,
        wallet_prefixes=prefixes,
        excluded_account_ids=frozenset(excluded_ids),
        excluded_handles=frozenset(excluded_handles),
        test_artist_ids=frozenset(test_artist_ids),
    )

    logger.debug(
        "Test exclusion set built",
        test_emails=len(listed_emails),
        excluded_accounts=len(excluded_ids),
        uncontactable_accounts=uncontactable,
        test_artists=len(exclusion_set.test_artist_ids),
    )
    return exclusion_set


def is_excluded(
    subject: Account | ContactHandle,
    exclusion_set: TestExclusionSet | None,
) -> bool:
    """True when ``subject`` is test traffic. ``None`` means exclusion is off."""
    if exclusion_set is None:
        return False
    if isinstance(subject, Account):
        return exclusion_set.excludes_account(subject)
    return exclusion_set.excludes_handle(subject)
