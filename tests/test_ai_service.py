from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from db_case import DatabaseTestCase, order_form

from oficina.config import settings
from oficina.services import ai_service
from oficina.services.ai_service import (
    DIAGNOSIS_FAILED,
    HISTORY_FAILED,
    SUMMARY_FAILED,
    NO_HISTORY,
    Diagnosis,
    analyze_vehicle_history,
    diagnose,
    format_diagnosis,
    summarize_order,
    summarize_saved_order,
)
from oficina.services.order_service import parse_order_input, save_order
from oficina.services.text_generator import MockTextGenerator, get_text_generator


class RecordingGenerator:
    def __init__(self, reply=None, error: Exception | None = None) -> None:
        self.reply = reply or {}
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def generate_json(self, prompt: str, *, task: str) -> dict:
        self.calls.append((prompt, task))
        if self.error:
            raise self.error
        return self.reply


class DiagnoseTests(unittest.TestCase):
    def test_short_symptoms_are_rejected_without_a_call(self) -> None:
        generator = RecordingGenerator()
        result = diagnose('barulho', generator=generator)
        self.assertFalse(result.ok)
        self.assertIsNotNone(result.message)
        self.assertEqual(generator.calls, [])

    def test_missing_history_uses_placeholder(self) -> None:
        generator = RecordingGenerator(
            {'diagnosis': 'Correia gasta', 'confidenceLevel': 0.7, 'recommendedActions': 'Trocar a correia'}
        )
        result = diagnose('chiado ao ligar o motor', '', generator=generator)
        self.assertTrue(result.ok)
        self.assertIn(NO_HISTORY, generator.calls[0][0])
        self.assertEqual(generator.calls[0][1], 'diagnosis')

    def test_confidence_is_clamped(self) -> None:
        generator = RecordingGenerator({'diagnosis': 'X', 'confidenceLevel': 1.7, 'recommendedActions': 'Y'})
        result = diagnose('motor falhando em marcha lenta', generator=generator)
        self.assertEqual(result.data.confidence_level, 1.0)

    def test_generator_failure_returns_generic_message(self) -> None:
        generator = RecordingGenerator(error=TimeoutError('deadline exceeded'))
        with self.assertLogs('oficina.services.ai_service', level='ERROR'):
            result = diagnose('motor falhando em marcha lenta', generator=generator)
        self.assertEqual(result.message, DIAGNOSIS_FAILED)
        self.assertIsNone(result.data)

    def test_malformed_reply_is_a_failure(self) -> None:
        generator = RecordingGenerator({'diagnosis': '', 'confidenceLevel': 'alto'})
        with self.assertLogs('oficina.services.ai_service', level='ERROR'):
            result = diagnose('motor falhando em marcha lenta', generator=generator)
        self.assertEqual(result.message, DIAGNOSIS_FAILED)

    def test_non_finite_confidence_is_a_failure(self) -> None:
        generator = RecordingGenerator({'diagnosis': 'X', 'confidenceLevel': float('nan'), 'recommendedActions': 'Y'})
        with self.assertLogs('oficina.services.ai_service', level='ERROR'):
            result = diagnose('motor falhando em marcha lenta', generator=generator)
        self.assertEqual(result.message, DIAGNOSIS_FAILED)
        self.assertIsNone(result.data)

    def test_format_diagnosis(self) -> None:
        text = format_diagnosis(Diagnosis(diagnosis='Bateria fraca', confidence_level=0.85, recommended_actions='Trocar'))
        self.assertEqual(text, 'DIAGNÓSTICO: Bateria fraca\n\nCONFIANÇA: 85%\n\nAÇÕES RECOMENDADAS:\nTrocar')


class SummaryAndHistoryTests(unittest.TestCase):
    def test_summary_requires_all_fields(self) -> None:
        generator = RecordingGenerator()
        result = summarize_order(
            services_performed='',
            parts_replaced='1X FILTRO',
            total_cost='10',
            vehicle_make='Fiat',
            vehicle_model='Uno',
            vehicle_year=2010,
            generator=generator,
        )
        self.assertFalse(result.ok)
        self.assertEqual(generator.calls, [])

    def test_summary_rejects_non_finite_cost(self) -> None:
        generator = RecordingGenerator()
        result = summarize_order(
            services_performed='1X TROCA DE ÓLEO',
            parts_replaced='NENHUMA PEÇA',
            total_cost='nan',
            vehicle_make='Fiat',
            vehicle_model='Uno',
            vehicle_year=2010,
            generator=generator,
        )
        self.assertFalse(result.ok)
        self.assertEqual(generator.calls, [])

    def test_summary_with_mock_generator(self) -> None:
        result = summarize_order(
            services_performed='1X TROCA DE ÓLEO',
            parts_replaced='NENHUMA PEÇA',
            total_cost=Decimal('120'),
            vehicle_make='Fiat',
            vehicle_model='Uno',
            vehicle_year=2010,
            generator=MockTextGenerator(),
        )
        self.assertTrue(result.ok)
        self.assertTrue(result.data.summary)

    def test_history_requires_minimum_length(self) -> None:
        result = analyze_vehicle_history('curto', generator=RecordingGenerator())
        self.assertFalse(result.ok)

    def test_history_failure_is_reported(self) -> None:
        generator = RecordingGenerator(error=ValueError('bad json'))
        with self.assertLogs('oficina.services.ai_service', level='ERROR'):
            result = analyze_vehicle_history('Troca de óleo em 2023; freios revisados', generator=generator)
        self.assertEqual(result.message, HISTORY_FAILED)

    def test_history_with_mock_generator(self) -> None:
        result = analyze_vehicle_history('Troca de óleo em 2023; freios revisados', generator=MockTextGenerator())
        self.assertTrue(result.ok)
        self.assertTrue(result.data.predicted_issues)


class UnconfiguredProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        get_text_generator.cache_clear()
        self.addCleanup(get_text_generator.cache_clear)
        for name, value in (('ai_provider', 'gemini'), ('gemini_api_key', None)):
            patcher = patch.object(settings, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_diagnose_reports_failure(self) -> None:
        with self.assertLogs('oficina.services.ai_service', level='ERROR'):
            result = diagnose('carro fazendo barulho ao frear')
        self.assertEqual(result.message, DIAGNOSIS_FAILED)
        self.assertIsNone(result.data)

    def test_summary_reports_failure(self) -> None:
        with self.assertLogs('oficina.services.ai_service', level='ERROR'):
            result = summarize_order(
                services_performed='1X TROCA DE ÓLEO',
                parts_replaced='NENHUMA PEÇA',
                total_cost='120',
                vehicle_make='Fiat',
                vehicle_model='Uno',
                vehicle_year=2010,
            )
        self.assertEqual(result.message, SUMMARY_FAILED)

    def test_history_reports_failure(self) -> None:
        with self.assertLogs('oficina.services.ai_service', level='ERROR'):
            result = analyze_vehicle_history('Troca de óleo em 2023; freios revisados')
        self.assertEqual(result.message, HISTORY_FAILED)


class SavedOrderSummaryTests(DatabaseTestCase):
    def test_empty_order_uses_placeholders(self) -> None:
        order = save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form(total='50'))).order
        generator = RecordingGenerator({'summary': 'ok'})
        result = summarize_saved_order(self.db, ctx=self.ctx, order_id=order.id, generator=generator)
        self.assertTrue(result.ok)
        prompt = generator.calls[0][0]
        self.assertIn(ai_service.NO_SERVICES, prompt)
        self.assertIn(ai_service.NO_PARTS, prompt)
        self.assertIn('50.00', prompt)

    def test_services_are_described_with_quantities(self) -> None:
        form = order_form(service_description__0='TROCA DE ÓLEO', service_quantity__0='2', service_unit_price__0='40')
        order = save_order(self.db, ctx=self.ctx, data=parse_order_input(form)).order
        generator = RecordingGenerator({'summary': 'ok'})
        summarize_saved_order(self.db, ctx=self.ctx, order_id=order.id, generator=generator)
        self.assertIn('2X TROCA DE ÓLEO', generator.calls[0][0])

    def test_default_generator_comes_from_factory(self) -> None:
        order = save_order(self.db, ctx=self.ctx, data=parse_order_input(order_form(total='50'))).order
        with patch('oficina.services.ai_service.get_text_generator', return_value=MockTextGenerator()) as factory:
            result = summarize_saved_order(self.db, ctx=self.ctx, order_id=order.id)
        factory.assert_called_once_with()
        self.assertTrue(result.ok)


if __name__ == '__main__':
    unittest.main()
