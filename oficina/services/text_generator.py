from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Protocol

import google.generativeai as genai

from oficina.config import settings

logger = logging.getLogger(__name__)

TASK_DIAGNOSIS = 'diagnosis'
TASK_ORDER_SUMMARY = 'order_summary'
TASK_VEHICLE_HISTORY = 'vehicle_history'


class TextGenerator(Protocol):
    def generate_json(self, prompt: str, *, task: str) -> dict: ...


class GeminiTextGenerator:
    def __init__(self, *, api_key: str | None = None, model_name: str | None = None, timeout_seconds: int | None = None) -> None:
        key = api_key or settings.gemini_api_key
        if not key:
            raise RuntimeError('GEMINI_API_KEY is required when AI_PROVIDER=gemini')
        genai.configure(api_key=key)
        self.model_name = model_name or settings.gemini_model
        self.timeout_seconds = timeout_seconds or settings.ai_timeout_seconds
        self.model = genai.GenerativeModel(self.model_name)

    def generate_json(self, prompt: str, *, task: str) -> dict:
        response = self.model.generate_content(
            prompt,
            generation_config={'response_mime_type': 'application/json'},
            request_options={'timeout': self.timeout_seconds},
        )
        payload = json.loads(response.text)
        if not isinstance(payload, dict):
            raise ValueError(f'Unexpected {task} reply from {self.model_name}')
        return payload


class MockTextGenerator:
    """Canned replies so the portal works without an API key."""

    def __init__(self) -> None:
        self.replies = {
            TASK_DIAGNOSIS: {
                'diagnosis': 'Possível desgaste nas pastilhas de freio dianteiras.',
                'confidenceLevel': 0.8,
                'recommendedActions': 'Inspecionar pastilhas e discos; substituir se abaixo da espessura mínima.',
            },
            TASK_ORDER_SUMMARY: {
                'summary': 'Serviços realizados conforme a ordem de serviço, com peças substituídas e valor total informado.',
            },
            TASK_VEHICLE_HISTORY: {
                'predictedIssues': 'Desgaste do sistema de freios e da suspensão dianteira.',
                'recommendedMaintenance': 'Revisão de freios a cada 10.000 km e alinhamento a cada 6 meses.',
                'summary': 'Veículo com manutenção regular; atenção aos itens de desgaste.',
            },
        }

    def generate_json(self, prompt: str, *, task: str) -> dict:
        if task not in self.replies:
            raise ValueError(f'Unknown task {task}')
        return dict(self.replies[task])


@lru_cache(maxsize=1)
def get_text_generator() -> TextGenerator:
    provider = settings.ai_provider.strip().lower()
    if provider == 'gemini':
        logger.info('text generator configured', extra={'provider': 'gemini', 'model': settings.gemini_model})
        return GeminiTextGenerator()
    return MockTextGenerator()
