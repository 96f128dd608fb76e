"""Pydantic request schemas used by the weekly questions API.

Schemas keep API input shapes stable and reject bad input before it
reaches the services.
"""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AnswerIn(BaseModel):
    """A single answered question inside a week submission."""
    questao_id: UUID
    alternativa: str = Field(min_length=1)
    correct: Optional[bool] = None
    tempo_resposta_segundos: Optional[float] = Field(default=None, gt=0)


class CompleteWeekIn(BaseModel):
    """Body of `POST /{numero_semana}/concluir`."""
    respostas: List[AnswerIn] = Field(default_factory=list)
    pontuacao: float = Field(default=0, ge=0, le=100)
    tempo_minutos: Optional[float] = Field(default=None, gt=0, le=1440)
    observacoes: Optional[str] = Field(default=None, max_length=500)


class QuestionIn(BaseModel):
    """One question of a published week, as stored in `WeekContentSet.questions`."""
    id: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    choices: List[str] = Field(default_factory=list)
    correct_choice: Optional[str] = None
    explanation: Optional[str] = None
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[str] = None


class WeekContentIn(BaseModel):
    """An item of a week content import file."""
    week_number: int = Field(ge=1)
    year: int = Field(ge=2000, le=2100)
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    questions: List[QuestionIn] = Field(default_factory=list)
    active: bool = True
