"""
# Database Package

Motor-backed persistence layer. The `db_manager` singleton owns the client;
stores obtain collections from it.

```python
from revision_scheduler.database import db_manager

await db_manager.connect()
items = db_manager.get_collection("revision_items")
```
"""

from revision_scheduler.database.manager import DatabaseManager, db_manager

__all__ = ["DatabaseManager", "db_manager"]
