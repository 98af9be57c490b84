"""Resolve user identifiers across the local store and the auth provider.

Orders and users may carry either of two identifiers: the id the local store
assigned to the user record, or the id issued by the external auth provider
(always prefixed with ``user_``). The provider id lives on the user record as
``external_id``. Lookups here chase one identifier into the other when a
direct match finds nothing.

Store failures are never caught here; only "nothing matched" is turned into
an empty result.
"""
import logging
from typing import Dict, Iterable, List, Optional

from documents import Order, User

EXTERNAL_ID_PREFIX = "user_"

logger = logging.getLogger(__name__)


class AmbiguousIdentityError(LookupError):
    def __init__(self, identifier: str, user_ids: List[str]):
        super().__init__(
            f"Identifier {identifier!r} matches {len(user_ids)} user records."
        )
        self.identifier = identifier
        self.user_ids = user_ids


def normalize_identifier(value) -> str:
    return str(value or "").strip()


def is_external_id(value) -> bool:
    return normalize_identifier(value).startswith(EXTERNAL_ID_PREFIX)


def find_user_by_external_id(store, external_id: str) -> Optional[User]:
    matches = store.find_users_by_external_ids([external_id])
    if len(matches) > 1:
        raise AmbiguousIdentityError(external_id, [user.id for user in matches])
    return matches[0] if matches else None


def resolve_user(store, user_id) -> Optional[User]:
    identifier = normalize_identifier(user_id)
    if not identifier:
        return None
    if is_external_id(identifier):
        return find_user_by_external_id(store, identifier)
    return store.get_user_by_local_id(identifier)


def get_user_orders(store, user_id) -> List[Order]:
    """Orders placed by ``user_id``, whichever identifier they were saved under."""
    identifier = normalize_identifier(user_id)
    if not identifier:
        return []

    orders = store.find_orders_by_user_id(identifier)
    if orders:
        return orders

    if is_external_id(identifier):
        user = find_user_by_external_id(store, identifier)
        if user and user.id and user.id != identifier:
            logger.info(
                "No orders stored under %s, retrying with local id %s",
                identifier,
                user.id,
            )
            return store.find_orders_by_user_id(user.id)
        return []

    user = store.get_user_by_local_id(identifier)
    if user and user.external_id and user.external_id != identifier:
        owner = find_user_by_external_id(store, user.external_id)
        if owner is None or owner.id != user.id:
            return []
        logger.info(
            "No orders stored under %s, retrying with provider id %s",
            identifier,
            user.external_id,
        )
        return store.find_orders_by_user_id(user.external_id)
    return []


def attach_customers(store, orders: Iterable[Order]) -> Dict[str, User]:
    """Map each distinct ``order.user_id`` to its user record.

    Identifiers that match nobody are left out. A provider id shared by
    several user records is also left out rather than picking one of them.
    """
    identifiers = {
        normalize_identifier(order.user_id)
        for order in orders
        if normalize_identifier(order.user_id)
    }
    external_ids = sorted(i for i in identifiers if is_external_id(i))
    local_ids = sorted(i for i in identifiers if not is_external_id(i))

    customers: Dict[str, User] = {}
    if local_ids:
        for user in store.get_users_by_local_ids(local_ids):
            if user.id in identifiers:
                customers[user.id] = user

    if external_ids:
        grouped: Dict[str, List[User]] = {}
        for user in store.find_users_by_external_ids(external_ids):
            grouped.setdefault(user.external_id, []).append(user)
        for external_id, users in grouped.items():
            if len(users) > 1:
                logger.warning(
                    "Provider id %s is shared by users %s; leaving orders unattributed",
                    external_id,
                    ", ".join(user.id for user in users),
                )
                continue
            customers[external_id] = users[0]

    return customers
