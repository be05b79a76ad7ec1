"""
Sandstorm Tracker - Write Operations
Persistence requests emitted by the state machine and applied by the gateway
"""

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class WriteOp:
    """A single upsert keyed by a natural key"""
    collection: str
    key: Dict[str, Any]
    set_fields: Dict[str, Any] = field(default_factory=dict)
    inc_fields: Dict[str, Any] = field(default_factory=dict)
    set_on_insert: Dict[str, Any] = field(default_factory=dict)
    push_fields: Dict[str, Any] = field(default_factory=dict)
    upsert: bool = True

    def to_update(self) -> Dict[str, Any]:
        """Build the MongoDB update document"""
        update: Dict[str, Any] = {}
        if self.set_fields:
            update['$set'] = dict(self.set_fields)
        if self.inc_fields:
            update['$inc'] = dict(self.inc_fields)
        if self.set_on_insert:
            # $set wins on conflicting paths
            update['$setOnInsert'] = {
                k: v for k, v in self.set_on_insert.items() if k not in self.set_fields
            }
            if not update['$setOnInsert']:
                del update['$setOnInsert']
        if self.push_fields:
            update['$push'] = dict(self.push_fields)
        update['$currentDate'] = {'last_updated': True}
        return update
