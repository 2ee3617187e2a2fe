from __future__ import annotations

import io
import json
import logging
import unittest
from decimal import Decimal

from oficina.logging_config import configure_logging, reset_logging


class StructuredLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_logging()
        self.stream = io.StringIO()
        configure_logging(level='DEBUG', json_output=True, stream=self.stream)

    def tearDown(self) -> None:
        reset_logging()

    def test_extra_fields_are_emitted_as_json(self) -> None:
        logging.getLogger('oficina.services.order_service').info(
            'payment recorded', extra={'order_id': 7, 'final_total': Decimal('90.00')}
        )
        payload = json.loads(self.stream.getvalue().strip())
        self.assertEqual(payload['message'], 'payment recorded')
        self.assertEqual(payload['level'], 'INFO')
        self.assertEqual(payload['order_id'], 7)
        self.assertEqual(payload['final_total'], '90.00')

    def test_configure_is_idempotent(self) -> None:
        configure_logging(level='INFO', stream=io.StringIO())
        self.assertEqual(len(logging.getLogger('oficina').handlers), 1)


if __name__ == '__main__':
    unittest.main()
