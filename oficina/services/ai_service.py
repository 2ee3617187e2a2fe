from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.services import order_service
from oficina.services.text_generator import (
    TASK_DIAGNOSIS,
    TASK_ORDER_SUMMARY,
    TASK_VEHICLE_HISTORY,
    TextGenerator,
    get_text_generator,
)

logger = logging.getLogger(__name__)

MIN_SYMPTOMS_LENGTH = 10
MIN_HISTORY_LENGTH = 10
NO_HISTORY = 'Nenhum histórico fornecido.'
NO_SERVICES = 'NENHUM SERVIÇO REALIZADO'
NO_PARTS = 'NENHUMA PEÇA'

DIAGNOSIS_FAILED = 'Ocorreu um erro ao obter o diagnóstico. Por favor, tente novamente.'
SUMMARY_FAILED = 'Ocorreu um erro ao gerar o resumo. Por favor, tente novamente.'
HISTORY_FAILED = 'Ocorreu um erro ao analisar o histórico. Por favor, tente novamente.'

DIAGNOSIS_PROMPT = """Você é um assistente de IA especialista em mecânica. Sua tarefa é diagnosticar problemas em veículos com base nos sintomas relatados e no histórico do veículo.

Sintomas: {symptoms}
Histórico do Veículo: {vehicle_history}

Forneça um diagnóstico, um nível de confiança (0-1) e ações recomendadas. Seja específico em seu diagnóstico.
Responda somente com JSON no formato:
{{"diagnosis": "diagnóstico", "confidenceLevel": 0.8, "recommendedActions": "ações recomendadas"}}"""

SUMMARY_PROMPT = """Você é um assistente de IA que gera resumos de ordens de serviço.
Com base nos detalhes abaixo, crie um resumo conciso que inclua os serviços realizados, as peças substituídas e o custo total.

Veículo: {vehicle_year} {vehicle_make} {vehicle_model}
Serviços Realizados: {services_performed}
Peças Substituídas: {parts_replaced}
Custo Total: {total_cost}

Responda somente com JSON no formato:
{{"summary": "resumo"}}"""

HISTORY_PROMPT = """Você é um mecânico especialista e consultor de serviços. Analise o histórico de serviço do veículo e os sintomas atuais para prever possíveis problemas futuros e recomendar manutenção proativa.

Histórico do Veículo:
{vehicle_history}

Sintomas Atuais (se houver):
{current_symptoms}

Responda somente com JSON no formato:
{{"predictedIssues": "problemas previstos", "recommendedMaintenance": "manutenção recomendada", "summary": "resumo"}}"""


@dataclass(frozen=True)
class AIResult:
    data: Any = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class Diagnosis:
    diagnosis: str
    confidence_level: float
    recommended_actions: str


@dataclass(frozen=True)
class OrderSummary:
    summary: str


@dataclass(frozen=True)
class VehicleHistoryAnalysis:
    predicted_issues: str
    recommended_maintenance: str
    summary: str


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f'missing field {key}')
    return value.strip()


def _clamp_confidence(raw) -> float:
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f'confidence {raw!r} is not a number')
    return min(max(value, 0.0), 1.0)


def format_diagnosis(diagnosis: Diagnosis) -> str:
    """Text stored in an order's diagnosis field."""
    return (
        f'DIAGNÓSTICO: {diagnosis.diagnosis}\n\n'
        f'CONFIANÇA: {round(diagnosis.confidence_level * 100)}%\n\n'
        f'AÇÕES RECOMENDADAS:\n{diagnosis.recommended_actions}'
    )


def diagnose(symptoms: str, vehicle_history: str | None = None, *, generator: TextGenerator | None = None) -> AIResult:
    symptoms = (symptoms or '').strip()
    if len(symptoms) < MIN_SYMPTOMS_LENGTH:
        return AIResult(message=f'Descreva os sintomas com pelo menos {MIN_SYMPTOMS_LENGTH} caracteres.')
    history = (vehicle_history or '').strip() or NO_HISTORY

    try:
        generator = generator or get_text_generator()
        payload = generator.generate_json(
            DIAGNOSIS_PROMPT.format(symptoms=symptoms, vehicle_history=history),
            task=TASK_DIAGNOSIS,
        )
        result = Diagnosis(
            diagnosis=_text(payload, 'diagnosis'),
            confidence_level=_clamp_confidence(payload.get('confidenceLevel', 0)),
            recommended_actions=_text(payload, 'recommendedActions'),
        )
    except Exception:
        logger.exception('diagnosis generation failed')
        return AIResult(message=DIAGNOSIS_FAILED)
    return AIResult(data=result)


def summarize_order(
    *,
    services_performed: str,
    parts_replaced: str,
    total_cost,
    vehicle_make: str,
    vehicle_model: str,
    vehicle_year,
    generator: TextGenerator | None = None,
) -> AIResult:
    fields = {
        'services_performed': (services_performed or '').strip(),
        'parts_replaced': (parts_replaced or '').strip(),
        'vehicle_make': (vehicle_make or '').strip(),
        'vehicle_model': (vehicle_model or '').strip(),
    }
    if not all(fields.values()):
        return AIResult(message='Dados da ordem incompletos para gerar o resumo.')
    try:
        cost = Decimal(str(total_cost))
        year = int(vehicle_year)
    except (InvalidOperation, TypeError, ValueError):
        return AIResult(message='Dados da ordem incompletos para gerar o resumo.')
    if not cost.is_finite():
        return AIResult(message='Dados da ordem incompletos para gerar o resumo.')

    try:
        generator = generator or get_text_generator()
        payload = generator.generate_json(
            SUMMARY_PROMPT.format(total_cost=f'{cost:.2f}', vehicle_year=year, **fields),
            task=TASK_ORDER_SUMMARY,
        )
        result = OrderSummary(summary=_text(payload, 'summary'))
    except Exception:
        logger.exception('order summary generation failed')
        return AIResult(message=SUMMARY_FAILED)
    return AIResult(data=result)


def summarize_saved_order(
    db: Session,
    *,
    ctx: WorkshopContext,
    order_id: int,
    generator: TextGenerator | None = None,
) -> AIResult:
    order = order_service.get_order(db, ctx=ctx, order_id=order_id)
    services, parts = order_service.get_order_lines(db, order_id=order.id)
    return summarize_order(
        services_performed=order_service.describe_services(services) or NO_SERVICES,
        parts_replaced=order_service.describe_parts(parts) or NO_PARTS,
        total_cost=order.total,
        vehicle_make=order.vehicle_make,
        vehicle_model=order.vehicle_model,
        vehicle_year=order.vehicle_year,
        generator=generator,
    )


def analyze_vehicle_history(
    vehicle_history: str,
    current_symptoms: str | None = None,
    *,
    generator: TextGenerator | None = None,
) -> AIResult:
    history = (vehicle_history or '').strip()
    if len(history) < MIN_HISTORY_LENGTH:
        return AIResult(message=f'Informe o histórico do veículo com pelo menos {MIN_HISTORY_LENGTH} caracteres.')

    try:
        generator = generator or get_text_generator()
        payload = generator.generate_json(
            HISTORY_PROMPT.format(vehicle_history=history, current_symptoms=(current_symptoms or '').strip()),
            task=TASK_VEHICLE_HISTORY,
        )
        result = VehicleHistoryAnalysis(
            predicted_issues=_text(payload, 'predictedIssues'),
            recommended_maintenance=_text(payload, 'recommendedMaintenance'),
            summary=_text(payload, 'summary'),
        )
    except Exception:
        logger.exception('vehicle history analysis failed')
        return AIResult(message=HISTORY_FAILED)
    return AIResult(data=result)
