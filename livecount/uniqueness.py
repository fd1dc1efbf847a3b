"""
Uniqueness tracking for deduplicating counters.

When a counter counts an extracted identifier (e.g. the organisation of a
user) rather than the entity itself, several entities can map to the same
token in one bucket. The tracker keeps, per bucket and token, the set of
entity ids currently contributing that token:

    tracking key = bucket key + subject_id=<token>  ->  {entity ids}

The token may only leave the bucket once its last contributor is gone.
"""

import logging
from typing import Any, Set

from livecount.keys import CounterKey, KeyBuilder
from livecount.storage import StorageBackend

logger = logging.getLogger(__name__)


class UniquenessTracker:
    """Reference counts entity ids behind a deduplicated token"""

    def __init__(self, storage: StorageBackend, keys: KeyBuilder):
        self.storage = storage
        self.keys = keys

    def track(self, key: CounterKey, token: Any, entity_id: Any) -> bool:
        """
        Record that entity_id contributes token to the bucket at key.

        Returns:
            True if entity_id was not yet recorded
        """
        tracking = self.keys.tracking_key(key, token).serialize()
        return self.storage.add_to_set(tracking, str(entity_id))

    def release(self, key: CounterKey, token: Any, entity_id: Any) -> bool:
        """
        Remove entity_id from the contributors of token.

        Returns:
            True if no contributor is left (the token may be removed from
            the bucket), False if other entities still map to it
        """
        tracking = self.keys.tracking_key(key, token).serialize()
        self.storage.remove_from_set(tracking, str(entity_id))
        remaining = self.storage.set_cardinality(tracking)

        if remaining:
            logger.debug(
                f"Token {token} kept in {key}: {remaining} contributor(s) remaining"
            )
            return False
        return True

    def contributors(self, key: CounterKey, token: Any) -> Set[str]:
        """Entity ids currently mapping to token in the bucket"""
        tracking = self.keys.tracking_key(key, token).serialize()
        return self.storage.set_members(tracking)
