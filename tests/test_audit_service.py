from __future__ import annotations

import unittest

from rm_portal.services.audit_service import log_audit
from rm_portal.services.memory_record_store import InMemoryRecordStore


class LogAuditTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = InMemoryRecordStore()

    async def test_event_is_appended(self) -> None:
        recorded = await log_audit(self.store, actor='user-1', action='table.created', table_id=3, metadata={'name': 'Week 1'})

        self.assertTrue(recorded)
        event = self.store.audit_events[-1]
        self.assertEqual(event.action, 'table.created')
        self.assertEqual(event.metadata, {'name': 'Week 1'})
        self.assertIsNotNone(event.created_at)

    async def test_failed_write_is_logged_not_raised(self) -> None:
        self.store.fail_next('append_audit_event')

        with self.assertLogs('rm_portal.services.audit_service', level='WARNING') as logs:
            recorded = await log_audit(self.store, actor='user-1', action='table.submitted', table_id=3)

        self.assertFalse(recorded)
        self.assertEqual(self.store.audit_events, [])
        self.assertIn('audit event not recorded', logs.output[0])


if __name__ == '__main__':
    unittest.main()
